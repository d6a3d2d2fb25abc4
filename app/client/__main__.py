"""
Generation Observer CLI

Usage:
    python -m app.client submit --business biz_123 --prompt "Summer sale banner" --tier flash
    python -m app.client watch job_abc123
    python -m app.client resume --business biz_123
    python -m app.client kill job_abc123
"""

import argparse
import asyncio
import logging
import sys

from app.client.api import InsufficientCredits, JobsApiClient
from app.client.poller import JobPoller
from app.client.tracker import PendingJobTracker, PendingView, PendingViewStore
from app.schemas.generate import GenerateRequest, ModelTierName

DEFAULT_STATE_FILE = ".adstudio/pending_views.json"


def _print_view(view: PendingView):
    print(f"  {view.placeholder_id} job={view.job_id or '-'} phase={view.phase.value} "
          f"status={view.status.value if view.status else '-'}")


def _print_removed(view: PendingView, reason: str):
    suffix = f": {view.error}" if view.error else ""
    print(f"  {view.placeholder_id} removed ({reason}){suffix}")


def _tracker(api: JobsApiClient, state_file: str) -> PendingJobTracker:
    return PendingJobTracker(
        api,
        store=PendingViewStore(state_file),
        on_change=_print_view,
        on_removed=_print_removed,
    )


async def cmd_submit(args) -> int:
    request = GenerateRequest(
        business_id=args.business,
        prompt=args.prompt,
        aspect_ratio=args.aspect_ratio,
        model_tier=ModelTierName(args.tier),
    )
    async with JobsApiClient(base_url=args.base_url) as api:
        tracker = _tracker(api, args.state_file)
        try:
            view = await tracker.submit(request)
        except InsufficientCredits as e:
            print(f"Not enough credits: {e.required} required, {e.balance} available")
            return 2
        revealed = await tracker.watch(view.placeholder_id)
        if revealed is None:
            return 1
        print(f"Image ready: {revealed.asset_url}")
        return 0


async def cmd_watch(args) -> int:
    async with JobsApiClient(base_url=args.base_url) as api:
        result = await JobPoller(api).poll(
            args.job_id,
            on_update=lambda s: print(f"  {s.id}: {s.status.value}"),
        )
        if result.not_found:
            print("Job not found")
            return 1
        if result.timed_out:
            print("Gave up waiting")
            return 1
        status = result.last_status
        if status.asset:
            print(f"Image ready: {status.asset.content}")
        elif status.error_message:
            print(f"Failed: {status.error_message}")
        return 0 if status.status.value == "completed" else 1


async def cmd_resume(args) -> int:
    async with JobsApiClient(base_url=args.base_url) as api:
        tracker = _tracker(api, args.state_file)
        views = await tracker.resume(args.business)
        if not views:
            print("Nothing pending")
            return 0
        results = await asyncio.gather(*(tracker.watch(v.placeholder_id) for v in views))
        for view in results:
            if view is not None:
                print(f"Image ready: {view.asset_url}")
        return 0


async def cmd_kill(args) -> int:
    async with JobsApiClient(base_url=args.base_url) as api:
        deleted = await api.delete_job(args.job_id)
    print("Deleted" if deleted else "Job not found")
    return 0 if deleted else 1


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(prog="python -m app.client", description="Watch image generation jobs")
    parser.add_argument("--base-url", default=None, help="API base URL (default: API_BASE_URL)")
    parser.add_argument("--state-file", default=DEFAULT_STATE_FILE, help="Where pending views are kept")
    parser.add_argument("--verbose", "-v", action="store_true")
    sub = parser.add_subparsers(dest="command", required=True)

    submit = sub.add_parser("submit", help="Submit a prompt and watch it to completion")
    submit.add_argument("--business", "-b", required=True)
    submit.add_argument("--prompt", "-p", required=True)
    submit.add_argument("--tier", "-t", default="pro", choices=[t.value for t in ModelTierName])
    submit.add_argument("--aspect-ratio", "-a", default="1:1")
    submit.set_defaults(handler=cmd_submit)

    watch = sub.add_parser("watch", help="Poll one job until it finishes")
    watch.add_argument("job_id")
    watch.set_defaults(handler=cmd_watch)

    resume = sub.add_parser("resume", help="Resume every pending job of a business")
    resume.add_argument("--business", "-b", required=True)
    resume.set_defaults(handler=cmd_resume)

    kill = sub.add_parser("kill", help="Delete a (stuck) job")
    kill.add_argument("job_id")
    kill.set_defaults(handler=cmd_kill)

    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    )
    return asyncio.run(args.handler(args))


if __name__ == "__main__":
    sys.exit(main())
