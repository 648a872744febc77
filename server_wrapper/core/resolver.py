"""Resolve source entries into byte payloads."""

import io
import logging
import posixpath
import zipfile
import zlib
from dataclasses import dataclass
from pathlib import Path
from typing import Any
from urllib.parse import unquote, urlparse

from ..errors import ConfigError, FetchError, TransformError
from ..models.config import (
    GitHubEntry,
    ModrinthEntry,
    PathEntry,
    SourceEntry,
    UrlEntry,
    WrapperConfig,
)
from .auth import GitHubAuth
from .client import GitHubClient, HttpClient, ModrinthClient

logger = logging.getLogger(__name__)


@dataclass
class FetchResult:
    """Fetched payload plus where it came from. Lives for one sync pass."""

    payload: bytes
    entry: str
    file_name: str  # Name the payload is written under for direct transforms
    source: str | None = None
    destination: str | None = None


def ensure_credentials(config: WrapperConfig, auth: GitHubAuth) -> None:
    """Fail at startup if GitHub sources are configured without a token.

    Raises:
        ConfigError: If a token is required but missing
    """
    if config.has_github_entries():
        auth.require()


def file_name_from_url(url: str) -> str:
    """Return the unquoted last path segment of a URL ('' if none)."""
    path = urlparse(url).path
    return unquote(path.rsplit("/", 1)[-1])


def select_artifact(
    artifacts: list[dict[str, Any]],
    selector: str | None,
    repository: str,
) -> dict[str, Any]:
    """Pick the artifact to download from a run's artifact list.

    With a selector the artifact must match by name. Without one a single
    artifact is used as-is; several are ambiguous and the first one wins.
    """
    if selector:
        for artifact in artifacts:
            if artifact.get("name") == selector:
                return artifact
        available = ", ".join(a.get("name", "?") for a in artifacts) or "none"
        raise FetchError(
            f"No artifact named {selector!r} in latest run of {repository} (available: {available})"
        )

    if not artifacts:
        raise FetchError(f"Latest successful run of {repository} has no artifacts")

    if len(artifacts) > 1:
        logger.warning(
            "Latest run of %s produced %d artifacts; using %r. Set 'artifact' to choose explicitly.",
            repository, len(artifacts), artifacts[0].get("name"),
        )
    return artifacts[0]


def unwrap_artifact(container: bytes, artifact_name: str) -> tuple[str, bytes]:
    """Strip the zip container GitHub wraps every artifact in.

    A container holding exactly one file yields that file. A container with
    several files is returned whole as ``<artifact_name>.zip`` so an unzip
    transform can split it.

    Returns:
        (file name, bytes)
    """
    try:
        with zipfile.ZipFile(io.BytesIO(container)) as archive:
            members = [info for info in archive.infolist() if not info.is_dir()]
            if len(members) == 1:
                member = members[0]
                return posixpath.basename(member.filename), archive.read(member)
    except (zipfile.BadZipFile, zlib.error, EOFError, NotImplementedError, RuntimeError) as e:
        raise TransformError(f"Artifact {artifact_name!r} is not a readable zip container: {e}") from e

    if not members:
        raise FetchError(f"Artifact {artifact_name!r} is empty")
    return f"{artifact_name}.zip", container


class SourceResolver:
    """Turns one declared source entry into raw bytes."""

    def __init__(
        self,
        root: Path,
        http: HttpClient | None = None,
        github: GitHubClient | None = None,
        modrinth: ModrinthClient | None = None,
    ) -> None:
        """Initialize resolver.

        Args:
            root: Directory relative local paths are resolved against
            http: HttpClient for plain URL downloads
            github: GitHubClient (required only for GitHub entries)
            modrinth: ModrinthClient (created from *http* if not provided)
        """
        self.root = Path(root)
        self.http = http or HttpClient()
        self.github = github
        self.modrinth = modrinth or ModrinthClient(self.http)

    def resolve(
        self,
        entry: SourceEntry,
        entry_name: str,
        source: str | None = None,
        destination: str | None = None,
    ) -> FetchResult:
        """Fetch one entry.

        Raises:
            FetchError: When the entry cannot be fetched
            ConfigError: When a GitHub entry is resolved without a client
        """
        try:
            if isinstance(entry, UrlEntry):
                name, payload = self._resolve_url(entry)
            elif isinstance(entry, PathEntry):
                name, payload = self._resolve_path(entry)
            elif isinstance(entry, GitHubEntry):
                name, payload = self._resolve_github(entry)
            elif isinstance(entry, ModrinthEntry):
                name, payload = self._resolve_modrinth(entry)
            else:
                raise TypeError(f"Unsupported source entry: {entry!r}")
        except (FetchError, TransformError, ConfigError) as e:
            raise e.with_context(destination=destination, source=source, entry=entry_name)

        logger.debug("Fetched %s (%d bytes)", entry_name, len(payload))
        return FetchResult(
            payload=payload,
            entry=entry_name,
            file_name=name or entry_name,
            source=source,
            destination=destination,
        )

    def _resolve_url(self, entry: UrlEntry) -> tuple[str, bytes]:
        logger.info("Downloading %s", entry.url)
        return file_name_from_url(entry.url), self.http.get_bytes(entry.url)

    def _resolve_path(self, entry: PathEntry) -> tuple[str, bytes]:
        path = Path(entry.path)
        if not path.is_absolute():
            path = self.root / path
        try:
            return path.name, path.read_bytes()
        except FileNotFoundError as e:
            raise FetchError(f"File not found: {path}", not_found=True) from e
        except OSError as e:
            raise FetchError(f"Could not read {path}: {e}") from e

    def _resolve_github(self, entry: GitHubEntry) -> tuple[str, bytes]:
        if self.github is None:
            raise ConfigError("GitHub source configured but no GitHub client available")

        run = self.github.latest_successful_run(
            entry.owner,
            entry.name,
            branch=entry.branch,
            workflow=entry.workflow,
        )
        if run is None:
            branch = f" on branch {entry.branch!r}" if entry.branch else ""
            raise FetchError(f"No successful workflow run found for {entry.repository}{branch}")

        artifacts = self.github.list_run_artifacts(entry.owner, entry.name, run["id"])
        artifact = select_artifact(artifacts, entry.artifact, entry.repository)
        logger.info(
            "Downloading artifact %r from run %s of %s",
            artifact.get("name"), run["id"], entry.repository,
        )
        container = self.github.download_artifact(artifact)
        return unwrap_artifact(container, artifact.get("name") or "artifact")

    def _resolve_modrinth(self, entry: ModrinthEntry) -> tuple[str, bytes]:
        file = self.modrinth.latest_file(entry.project_id, entry.game_version)
        if file is None:
            version = f" for {entry.game_version}" if entry.game_version else ""
            raise FetchError(f"No Modrinth version of {entry.project_id!r}{version}")
        logger.info("Downloading %s from Modrinth", file.get("filename"))
        return file.get("filename") or "", self.http.get_bytes(file["url"])
