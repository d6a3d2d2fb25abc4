# Observer client - polling, progress phases and reload recovery
from app.client.api import ClientError, InsufficientCredits, JobNotFound, JobsApiClient
from app.client.phases import InvalidPhaseTransition, PhaseMachine, ProgressPhase
from app.client.poller import JobPoller, PollResult
from app.client.tracker import PendingJobTracker, PendingView, PendingViewStore

__all__ = [
    "ClientError",
    "InsufficientCredits",
    "JobNotFound",
    "JobsApiClient",
    "InvalidPhaseTransition",
    "PhaseMachine",
    "ProgressPhase",
    "JobPoller",
    "PollResult",
    "PendingJobTracker",
    "PendingView",
    "PendingViewStore",
]
