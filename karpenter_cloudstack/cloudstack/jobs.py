"""Polling for CloudStack asynchronous jobs."""

from __future__ import annotations

from loguru import logger
from tenacity import RetryError, retry, retry_if_exception_type, stop_after_delay, wait_fixed

from karpenter_cloudstack.cloudstack.api import AsyncJobResult, InventoryClient
from karpenter_cloudstack.constants import POLL_INTERVAL, JobStatus
from karpenter_cloudstack.errors import AsyncJobFailedError, BackendError, WaitTimeoutError


class _JobPending(Exception):
    pass


async def wait_for_async_job(
    client: InventoryClient,
    job_id: str,
    timeout: float,
    *,
    interval: float = POLL_INTERVAL,
) -> AsyncJobResult:
    """Poll ``job_id`` until it succeeds, fails, or ``timeout`` elapses.

    Args:
        client: Inventory client used to query the job.
        job_id: CloudStack async job ID.
        timeout: Deadline in seconds.
        interval: Seconds between polls.

    Returns:
        The successful job result.

    Raises:
        AsyncJobFailedError: The job finished with status failed.
        WaitTimeoutError: The job was still pending at the deadline.
        BackendError: Querying the job failed.

    Task cancellation interrupts the wait immediately; the remote job is
    left as it is.
    """
    log = logger.bind(component="jobs", job_id=job_id)

    @retry(
        stop=stop_after_delay(timeout),
        wait=wait_fixed(interval),
        retry=retry_if_exception_type(_JobPending),
    )
    async def _poll() -> AsyncJobResult:
        result = await client.query_async_job_result(job_id)
        match result.status:
            case JobStatus.SUCCESS:
                return result
            case JobStatus.FAILED:
                raise AsyncJobFailedError(job_id, result.error or "unknown error")
            case JobStatus.PENDING:
                log.debug("Async job {job_id} still pending", job_id=job_id)
                raise _JobPending()
            case _:
                raise BackendError(
                    "querying async job", f"unknown job status {result.status!r} for job {job_id}"
                )

    try:
        return await _poll()
    except RetryError as e:
        raise WaitTimeoutError(f"timeout waiting for async job {job_id}") from e
