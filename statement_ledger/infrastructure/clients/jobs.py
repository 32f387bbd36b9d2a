"""Background job submission over a webhook, with exponential backoff retry logic"""

import httpx
import asyncio
from typing import Any, Dict, Protocol
from statement_ledger.config import settings
from statement_ledger.domain.exceptions import JobSubmissionError
from statement_ledger.infrastructure.observability.metrics import job_latency_histogram, job_submission_failures_counter


class JobSubmitter(Protocol):
    """Anything that can enqueue a named job"""

    async def submit(self, job_name: str, payload: Dict[str, Any]) -> None:
        ...


class WebhookJobClient:
    """Submits jobs to the worker queue's HTTP endpoint"""

    def __init__(self, webhook_url: str | None = None):
        self.webhook_url = webhook_url or settings.job_webhook_url
        self.max_retries = settings.job_max_retries
        self.backoff_base = settings.job_backoff_base

    async def submit(self, job_name: str, payload: Dict[str, Any]) -> None:
        """
        Submit a job with retry logic.

        Retry strategy:
        - Exponential backoff: 1s, 2s, 4s, 8s (base * 2^(attempt-1))
        - Retries on 5xx errors and network failures

        Raises:
            JobSubmissionError: after max_retries failed attempts
        """
        attempt = 0
        async with httpx.AsyncClient() as client:
            while attempt < self.max_retries:
                try:
                    with job_latency_histogram.time():
                        response = await client.post(
                            self.webhook_url,
                            json={"job": job_name, "payload": payload},
                            timeout=settings.http_timeout_seconds,
                        )
                        response.raise_for_status()
                        return

                except (httpx.HTTPStatusError, httpx.RequestError) as e:
                    attempt += 1
                    job_submission_failures_counter.inc()

                    if attempt >= self.max_retries:
                        raise JobSubmissionError(f"Job {job_name} not submitted after {attempt} attempts: {e}") from e

                    backoff = self.backoff_base * (2 ** (attempt - 1))
                    await asyncio.sleep(backoff)
