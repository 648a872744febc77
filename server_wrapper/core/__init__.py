"""Core wrapper functionality."""

from ..errors import (
    ConfigError,
    FetchError,
    FilesystemError,
    NotifyError,
    ProcessError,
    SyncCancelled,
    TransformError,
    UnsafePathError,
    WrapperError,
)
from .auth import GitHubAuth
from .client import GitHubClient, HttpClient, ModrinthClient
from .notify import Notifier, NullNotifier, StatusEvent, WebhookNotifier
from .resolver import FetchResult, SourceResolver
from .supervisor import LifecycleEvent, ProcessSupervisor, State
from .sync import DestinationSynchronizer, SyncOutcome
from .triggers import TriggerRouter

__all__ = [
    "ConfigError",
    "DestinationSynchronizer",
    "FetchError",
    "FetchResult",
    "FilesystemError",
    "GitHubAuth",
    "GitHubClient",
    "HttpClient",
    "LifecycleEvent",
    "ModrinthClient",
    "Notifier",
    "NotifyError",
    "NullNotifier",
    "ProcessError",
    "ProcessSupervisor",
    "SourceResolver",
    "State",
    "StatusEvent",
    "SyncCancelled",
    "SyncOutcome",
    "TransformError",
    "TriggerRouter",
    "UnsafePathError",
    "WebhookNotifier",
    "WrapperError",
]
