"""Utility exports for async concurrency helpers."""

from review_pipeline.utils.concurrency import (
    BoundedSemaphore,
    CancellationToken,
    WorkerPool,
    default_concurrency,
    run_in_thread,
    run_with_timeout,
)

__all__ = [
    "BoundedSemaphore",
    "CancellationToken",
    "WorkerPool",
    "default_concurrency",
    "run_in_thread",
    "run_with_timeout",
]
