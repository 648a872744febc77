"""Configuration and data models for the wrapper."""

import fnmatch
import posixpath
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from ..errors import ConfigError

DEFAULT_CONFIG_NAME = "wrapper.yaml"
DEFAULT_MIN_RESTART_INTERVAL = 240
DEFAULT_MAX_WORKERS = 8

STARTUP_TRIGGER = "startup"


# ---------------------------------------------------------------------------
# Transforms
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Pattern:
    """A glob filter; a leading ``!`` in the source text marks an exclusion."""

    glob: str
    exclude: bool = False

    @classmethod
    def parse(cls, text: str) -> "Pattern":
        """Create from the configuration string form."""
        if not isinstance(text, str) or not text.strip("!"):
            raise ConfigError(f"Invalid filter pattern: {text!r}")
        if text.startswith("!"):
            return cls(glob=text[1:], exclude=True)
        return cls(glob=text)

    def matches(self, path: str) -> bool:
        """Check the glob against a relative archive path.

        ``*`` and ``**`` both match across ``/``.
        """
        return fnmatch.fnmatchcase(path, self.glob)

    def __str__(self) -> str:
        return f"!{self.glob}" if self.exclude else self.glob


@dataclass(frozen=True)
class DirectTransform:
    """Pass the fetched bytes through as a single file."""

    def to_dict(self) -> dict[str, Any] | None:
        return None


@dataclass(frozen=True)
class UnzipTransform:
    """Extract archive members that survive the filter list."""

    patterns: tuple[Pattern, ...] = ()

    def includes(self, path: str) -> bool:
        """Evaluate patterns in order; the last match wins.

        A path no pattern matches is kept only when the list has no
        inclusion patterns at all.
        """
        included = all(p.exclude for p in self.patterns)
        for pattern in self.patterns:
            if pattern.matches(path):
                included = not pattern.exclude
        return included

    def to_dict(self) -> dict[str, Any]:
        return {"unzip": [str(p) for p in self.patterns]}


TransformSpec = DirectTransform | UnzipTransform


def parse_transform(data: Any) -> TransformSpec:
    """Create a transform spec from its YAML value."""
    if data is None or data == "direct":
        return DirectTransform()
    if isinstance(data, dict) and set(data) == {"unzip"}:
        patterns = data["unzip"] or []
        if not isinstance(patterns, list):
            raise ConfigError(f"'unzip' must be a list of patterns, got {patterns!r}")
        return UnzipTransform(patterns=tuple(Pattern.parse(p) for p in patterns))
    raise ConfigError(f"Unknown transform: {data!r}")


# ---------------------------------------------------------------------------
# Source entries
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class UrlEntry:
    """Plain HTTP(S) download."""

    url: str

    def to_dict(self) -> dict[str, Any]:
        return {"url": self.url}


@dataclass(frozen=True)
class GitHubEntry:
    """Artifact of the latest successful GitHub Actions run."""

    repository: str  # "owner/name"
    branch: str | None = None
    workflow: str | None = None  # workflow file name, e.g. "build.yml"
    artifact: str | None = None  # artifact name selector

    @property
    def owner(self) -> str:
        return self.repository.split("/", 1)[0]

    @property
    def name(self) -> str:
        return self.repository.split("/", 1)[1]

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"github": self.repository}
        for key in ("branch", "workflow", "artifact"):
            value = getattr(self, key)
            if value:
                data[key] = value
        return data


@dataclass(frozen=True)
class ModrinthEntry:
    """Newest version of a Modrinth project."""

    project_id: str
    game_version: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"modrinth": self.project_id}
        if self.game_version:
            data["game_version"] = self.game_version
        return data


@dataclass(frozen=True)
class PathEntry:
    """File on the local filesystem."""

    path: str

    def to_dict(self) -> dict[str, Any]:
        return {"path": self.path}


SourceEntry = UrlEntry | GitHubEntry | ModrinthEntry | PathEntry


def parse_entry(name: str, data: Any) -> SourceEntry:
    """Create a source entry from its YAML mapping.

    The variant is chosen by which of ``url``, ``github``, ``modrinth`` or
    ``path`` is present.
    """
    if not isinstance(data, dict):
        raise ConfigError(f"Source entry must be a mapping, got {data!r}", entry=name)

    kinds = [k for k in ("url", "github", "modrinth", "path") if k in data]
    if len(kinds) != 1:
        raise ConfigError(
            "Source entry needs exactly one of url/github/modrinth/path", entry=name
        )

    kind = kinds[0]
    if kind == "url":
        return UrlEntry(url=str(data["url"]))
    if kind == "github":
        repository = str(data["github"])
        owner, _, repo = repository.partition("/")
        if not owner or not repo or "/" in repo:
            raise ConfigError(
                f"Malformed GitHub reference {repository!r}, expected 'owner/name'",
                entry=name,
            )
        return GitHubEntry(
            repository=repository,
            branch=data.get("branch"),
            workflow=data.get("workflow"),
            artifact=data.get("artifact"),
        )
    if kind == "modrinth":
        return ModrinthEntry(
            project_id=str(data["modrinth"]),
            game_version=data.get("game_version"),
        )
    return PathEntry(path=str(data["path"]))


# ---------------------------------------------------------------------------
# Destinations
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SourceSet:
    """A named group of entries sharing one transform."""

    name: str
    transform: TransformSpec = field(default_factory=DirectTransform)
    entries: dict[str, SourceEntry] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, name: str, data: dict[str, Any]) -> "SourceSet":
        """Create from dictionary.

        ``transform`` is reserved; every other key names an entry.
        """
        if not isinstance(data, dict):
            raise ConfigError(f"Source must be a mapping, got {data!r}", source=name)
        entries: dict[str, SourceEntry] = {}
        for key, value in data.items():
            if key == "transform":
                continue
            try:
                entries[key] = parse_entry(key, value)
            except ConfigError as e:
                raise e.with_context(source=name)
        try:
            transform = parse_transform(data.get("transform"))
        except ConfigError as e:
            raise e.with_context(source=name)
        return cls(name=name, transform=transform, entries=entries)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for YAML serialization."""
        data: dict[str, Any] = {}
        transform = self.transform.to_dict()
        if transform is not None:
            data["transform"] = transform
        for key, entry in self.entries.items():
            data[key] = entry.to_dict()
        return data


@dataclass(frozen=True)
class Destination:
    """A directory whose contents are owned and replaced by the wrapper."""

    name: str
    path: str  # Relative to the managed root
    triggers: frozenset[str] = frozenset({STARTUP_TRIGGER})
    sources: dict[str, SourceSet] = field(default_factory=dict)

    @property
    def entry_count(self) -> int:
        return sum(len(s.entries) for s in self.sources.values())

    def resolve_path(self, root: Path) -> Path:
        """Return the absolute directory, rejecting paths outside *root*."""
        if not self.path or Path(self.path).is_absolute():
            raise ConfigError(
                f"Destination path must be relative, got {self.path!r}",
                destination=self.name,
            )
        normalized = posixpath.normpath(Path(self.path).as_posix())
        if normalized == "." or normalized == ".." or normalized.startswith("../"):
            raise ConfigError(
                f"Destination path {self.path!r} escapes the managed root",
                destination=self.name,
            )
        root = Path(root).resolve()
        target = (root / normalized).resolve()
        if target == root or not target.is_relative_to(root):
            raise ConfigError(
                f"Destination path {self.path!r} escapes the managed root",
                destination=self.name,
            )
        return target

    @classmethod
    def from_dict(cls, name: str, data: dict[str, Any]) -> "Destination":
        """Create from dictionary."""
        if not isinstance(data, dict) or "path" not in data:
            raise ConfigError("Destination needs a 'path'", destination=name)
        sources: dict[str, SourceSet] = {}
        for source_name, source_data in (data.get("sources") or {}).items():
            try:
                sources[source_name] = SourceSet.from_dict(source_name, source_data)
            except ConfigError as e:
                raise e.with_context(destination=name)
        triggers = data.get("triggers", [STARTUP_TRIGGER]) or []
        if isinstance(triggers, str):
            triggers = [triggers]
        return cls(
            name=name,
            path=str(data["path"]),
            triggers=frozenset(triggers),
            sources=sources,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for YAML serialization."""
        return {
            "path": self.path,
            "triggers": sorted(self.triggers),
            "sources": {k: s.to_dict() for k, s in self.sources.items()},
        }


# ---------------------------------------------------------------------------
# Triggers
# ---------------------------------------------------------------------------

class TriggerKind:
    """Kinds of trigger."""

    STARTUP = "startup"
    WEBHOOK = "webhook"  # Parsed but not fired automatically


@dataclass(frozen=True)
class Trigger:
    """A named event that resynchronizes its subscribed destinations."""

    name: str
    kind: str = TriggerKind.STARTUP
    options: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, name: str, data: dict[str, Any] | None) -> "Trigger":
        """Create from dictionary."""
        data = dict(data or {})
        kind = data.pop("type", TriggerKind.STARTUP)
        if kind not in (TriggerKind.STARTUP, TriggerKind.WEBHOOK):
            raise ConfigError(f"Unknown trigger type {kind!r} for trigger {name!r}")
        return cls(name=name, kind=kind, options=data)

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.kind, **self.options}


# ---------------------------------------------------------------------------
# Main configuration
# ---------------------------------------------------------------------------

def _default_destinations() -> dict[str, Destination]:
    return {
        "mods": Destination(
            name="mods",
            path="mods",
            triggers=frozenset({STARTUP_TRIGGER}),
            sources={
                "jars": SourceSet(
                    name="jars",
                    entries={
                        "fabric-api": UrlEntry(
                            url="https://github.com/FabricMC/fabric/releases/download/"
                            "0.29.3%2B1.16/fabric-api-0.29.3+1.16.jar"
                        ),
                    },
                ),
            },
        ),
    }


@dataclass
class WrapperConfig:
    """Main configuration for the wrapper."""

    run: list[str] = field(default_factory=lambda: ["java -jar server.jar nogui"])
    destinations: dict[str, Destination] = field(default_factory=dict)
    triggers: dict[str, Trigger] = field(
        default_factory=lambda: {STARTUP_TRIGGER: Trigger(name=STARTUP_TRIGGER)}
    )
    status_webhook: str | None = None
    github_token: str | None = None
    min_restart_interval_seconds: int = DEFAULT_MIN_RESTART_INTERVAL
    max_workers: int = DEFAULT_MAX_WORKERS
    stop_on_failure: bool = False
    # Directory that destination paths are relative to
    root: Path = field(default_factory=Path.cwd)

    @classmethod
    def from_dict(cls, data: dict[str, Any], base_dir: Path | None = None) -> "WrapperConfig":
        """Create from dictionary; relative ``root`` resolves against *base_dir*."""
        base_dir = Path(base_dir) if base_dir is not None else Path.cwd()

        run = data.get("run", ["java -jar server.jar nogui"])
        if isinstance(run, str):
            run = [run]

        destinations = {}
        for name, dest_data in (data.get("destinations") or {}).items():
            destinations[name] = Destination.from_dict(name, dest_data)

        triggers_data = data.get("triggers")
        if triggers_data is None:
            triggers = {STARTUP_TRIGGER: Trigger(name=STARTUP_TRIGGER)}
        else:
            triggers = {
                name: Trigger.from_dict(name, trigger_data)
                for name, trigger_data in triggers_data.items()
            }

        status = data.get("status") or {}
        tokens = data.get("tokens") or {}

        return cls(
            run=[str(cmd) for cmd in run],
            destinations=destinations,
            triggers=triggers,
            status_webhook=status.get("webhook"),
            github_token=tokens.get("github"),
            min_restart_interval_seconds=int(
                data.get("min_restart_interval_seconds", DEFAULT_MIN_RESTART_INTERVAL)
            ),
            max_workers=max(1, int(data.get("max_workers", DEFAULT_MAX_WORKERS))),
            stop_on_failure=bool(data.get("stop_on_failure", False)),
            root=(base_dir / data.get("root", ".")).resolve(),
        )

    @classmethod
    def load(cls, config_path: Path) -> "WrapperConfig":
        """Load configuration from YAML file."""
        config_path = Path(config_path)
        try:
            with open(config_path) as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Malformed config {config_path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigError(f"Config {config_path} must contain a mapping")
        return cls.from_dict(data, base_dir=config_path.parent)

    @classmethod
    def load_or_create(cls, config_path: Path) -> "WrapperConfig":
        """Load the config, writing a default one first if it does not exist."""
        config_path = Path(config_path)
        if not config_path.exists():
            config = cls(destinations=_default_destinations())
            config.save(config_path)
        return cls.load(config_path)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for YAML serialization.

        The GitHub token is never written back.
        """
        data: dict[str, Any] = {
            "run": list(self.run),
            "min_restart_interval_seconds": self.min_restart_interval_seconds,
            "max_workers": self.max_workers,
        }
        if self.stop_on_failure:
            data["stop_on_failure"] = True
        if self.status_webhook:
            data["status"] = {"webhook": self.status_webhook}
        data["triggers"] = {name: t.to_dict() for name, t in self.triggers.items()}
        data["destinations"] = {
            name: d.to_dict() for name, d in self.destinations.items()
        }
        return data

    def save(self, config_path: Path) -> None:
        """Save configuration to YAML file."""
        config_path = Path(config_path)
        config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(config_path, "w") as f:
            yaml.dump(self.to_dict(), f, default_flow_style=False, sort_keys=False)

    def has_github_entries(self) -> bool:
        """Check whether any destination pulls from GitHub artifacts."""
        return any(
            isinstance(entry, GitHubEntry)
            for dest in self.destinations.values()
            for source in dest.sources.values()
            for entry in source.entries.values()
        )

    def validate(self) -> None:
        """Check paths and trigger references.

        Raises:
            ConfigError: On the first problem found
        """
        seen: dict[Path, str] = {}
        for dest in self.destinations.values():
            target = dest.resolve_path(self.root)
            for other_path, other_name in seen.items():
                if target == other_path or target.is_relative_to(other_path) or other_path.is_relative_to(target):
                    raise ConfigError(
                        f"Destination path overlaps destination {other_name!r}",
                        destination=dest.name,
                    )
            seen[target] = dest.name

            unknown = sorted(t for t in dest.triggers if t not in self.triggers)
            if unknown:
                raise ConfigError(
                    f"Destination subscribes to undeclared trigger(s): {', '.join(unknown)}",
                    destination=dest.name,
                )

        if not self.run:
            raise ConfigError("No commands configured under 'run'")
