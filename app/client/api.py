"""
Jobs API Client
Async HTTP client for the generation job endpoints.
"""

import logging
from typing import List, Optional

import httpx

from app.core.config import settings
from app.schemas.generate import GenerateRequest, GenerateResponse
from app.schemas.job import JobResponse, JobStatusResponse

logger = logging.getLogger(__name__)

GENERATE_PATH = "/api/v1/generate-image"


class ClientError(Exception):
    """Base exception for API client errors."""


class JobNotFound(ClientError):
    """The job row does not exist (deleted, or never created)."""


class InsufficientCredits(ClientError):
    """Admission control refused the job."""

    def __init__(self, required: int, balance: int):
        super().__init__(f"Insufficient credits: {required} required, {balance} available")
        self.required = required
        self.balance = balance


class JobsApiClient:
    """Thin wrapper over the generation endpoints."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 30.0,
    ):
        self._client = httpx.AsyncClient(
            base_url=base_url or settings.API_BASE_URL,
            transport=transport,
            timeout=timeout,
        )

    async def close(self):
        await self._client.aclose()

    async def __aenter__(self) -> "JobsApiClient":
        return self

    async def __aexit__(self, *exc_info):
        await self.close()

    async def create_job(self, request: GenerateRequest) -> GenerateResponse:
        """Submit a generation request; returns as soon as the job exists."""
        response = await self._client.post(
            GENERATE_PATH,
            json=request.model_dump(mode="json", by_alias=True, exclude_none=True),
        )
        if response.status_code == 402:
            body = response.json()
            raise InsufficientCredits(body.get("required", 0), body.get("balance", 0))
        response.raise_for_status()
        return GenerateResponse.model_validate(response.json())

    async def get_status(self, job_id: str) -> JobStatusResponse:
        response = await self._client.get(f"{GENERATE_PATH}/status/{job_id}")
        if response.status_code == 404:
            raise JobNotFound(job_id)
        response.raise_for_status()
        return JobStatusResponse.model_validate(response.json())

    async def get_pending(self, business_id: str) -> List[JobResponse]:
        response = await self._client.get(f"{GENERATE_PATH}/pending/{business_id}")
        response.raise_for_status()
        return [JobResponse.model_validate(job) for job in response.json().get("jobs", [])]

    async def delete_job(self, job_id: str) -> bool:
        """Delete a job row. Returns False when it was already gone."""
        response = await self._client.delete(f"{GENERATE_PATH}/job/{job_id}")
        if response.status_code == 404:
            return False
        response.raise_for_status()
        return True


__all__ = ["GENERATE_PATH", "ClientError", "JobNotFound", "InsufficientCredits", "JobsApiClient"]
