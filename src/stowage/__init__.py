from .classify import Classification, classify, default_classifier, is_connectivity_error, make_classifier
from .config import AGGRESSIVE_POLICY, DEFAULT_POLICY, NO_RETRY, RetryPolicy, StorageOptions
from .entity import EntityMapper, PropertyBag, TableEntity, from_bag, to_bag
from .errors import EntityConversionError, RetryCancelledError, StopReason, StorageError
from .extras import azure_classifier
from .observability import logging_hook
from .policy import AsyncRetry, AttemptContext, Retry, execute_with_retry, execute_with_retry_sync, retry
from .storage import StorageSurface, TableStore, TableTransactionAction
from .strategies import backoff_delay, exponential_jitter

__all__ = [
    "AsyncRetry",
    "Retry",
    "RetryPolicy",
    "StorageOptions",
    "DEFAULT_POLICY",
    "NO_RETRY",
    "AGGRESSIVE_POLICY",
    "execute_with_retry",
    "execute_with_retry_sync",
    "retry",
    "AttemptContext",
    "Classification",
    "classify",
    "default_classifier",
    "make_classifier",
    "is_connectivity_error",
    "azure_classifier",
    "backoff_delay",
    "exponential_jitter",
    "StopReason",
    "StorageError",
    "RetryCancelledError",
    "EntityConversionError",
    "EntityMapper",
    "PropertyBag",
    "TableEntity",
    "to_bag",
    "from_bag",
    "StorageSurface",
    "TableStore",
    "TableTransactionAction",
    "logging_hook",
]
