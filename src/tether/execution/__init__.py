"""Request execution: one classified round trip, retry, and paced batches."""

from tether.execution.batch import BatchExecutor, BatchReport
from tether.execution.retry import ExponentialBackoff, RetryContext, RetryPolicy, with_retry
from tether.execution.transport import IntegrationRequest, TransportClient

__all__ = [
    "BatchExecutor",
    "BatchReport",
    "ExponentialBackoff",
    "IntegrationRequest",
    "RetryContext",
    "RetryPolicy",
    "TransportClient",
    "with_retry",
]
