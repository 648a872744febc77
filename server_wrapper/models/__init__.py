"""Data models for the wrapper."""

from .config import (
    Destination,
    DirectTransform,
    GitHubEntry,
    ModrinthEntry,
    PathEntry,
    Pattern,
    SourceEntry,
    SourceSet,
    TransformSpec,
    Trigger,
    TriggerKind,
    UnzipTransform,
    UrlEntry,
    WrapperConfig,
)

__all__ = [
    "Destination",
    "DirectTransform",
    "GitHubEntry",
    "ModrinthEntry",
    "PathEntry",
    "Pattern",
    "SourceEntry",
    "SourceSet",
    "TransformSpec",
    "Trigger",
    "TriggerKind",
    "UnzipTransform",
    "UrlEntry",
    "WrapperConfig",
]
