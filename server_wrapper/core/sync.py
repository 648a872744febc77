"""Destination synchronization: fetch, transform, stage and swap."""

import logging
import os
import shutil
import tempfile
import threading
import uuid
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from pathlib import Path

from ..errors import FilesystemError, SyncCancelled, TransformError, WrapperError
from ..models.config import DEFAULT_MAX_WORKERS, Destination, SourceEntry, TransformSpec
from . import transform
from .resolver import SourceResolver

logger = logging.getLogger(__name__)

STAGING_MARKER = ".staging-"
OLD_MARKER = ".old-"


@dataclass
class SyncOutcome:
    """Result of synchronizing one destination."""

    destination: str
    success: bool
    file_count: int = 0
    error: WrapperError | None = None
    cancelled: bool = False

    @property
    def source(self) -> str | None:
        return self.error.source if self.error else None

    @property
    def entry(self) -> str | None:
        return self.error.entry if self.error else None

    @property
    def message(self) -> str:
        if self.success:
            return f"{self.file_count} file(s)"
        if self.cancelled:
            return "cancelled"
        return str(self.error) if self.error else "failed"


@dataclass(frozen=True)
class _Job:
    source: str
    transform: TransformSpec
    entry_name: str
    entry: SourceEntry


class DestinationSynchronizer:
    """Replaces destination directories with freshly fetched file sets.

    The live directory is never modified in place: the new file set is
    written to a hidden staging sibling and renamed into place once complete.
    """

    def __init__(
        self,
        resolver: SourceResolver,
        root: Path,
        max_workers: int = DEFAULT_MAX_WORKERS,
        cancel_event: threading.Event | None = None,
        poll_interval: float = 0.2,
    ) -> None:
        """Initialize synchronizer.

        Args:
            resolver: SourceResolver used for every entry
            root: Managed root that destination paths are relative to
            max_workers: Upper bound on concurrent fetches per destination
            cancel_event: Shared shutdown flag; when set, syncs are abandoned
            poll_interval: How often pending fetches check for cancellation
        """
        self.resolver = resolver
        self.root = Path(root)
        self.max_workers = max(1, max_workers)
        self.cancel_event = cancel_event or threading.Event()
        self.poll_interval = poll_interval
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, name: str) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault(name, threading.Lock())

    def sync(self, destination: Destination) -> SyncOutcome:
        """Synchronize one destination.

        Syncs of the same destination are serialized. Failures are returned
        as outcomes, never raised.
        """
        with self._lock_for(destination.name):
            try:
                target = destination.resolve_path(self.root)
                self._cleanup_leftovers(target)
                files = self._collect(destination)
                staging = self._stage(target, files)
                self._swap(staging, target)
            except SyncCancelled as e:
                e.with_context(destination=destination.name)
                logger.warning("Sync of %s cancelled", destination.name)
                return SyncOutcome(destination.name, success=False, error=e, cancelled=True)
            except WrapperError as e:
                e.with_context(destination=destination.name)
                logger.error("Sync failed, %s left unchanged: %s", destination.name, e)
                return SyncOutcome(destination.name, success=False, error=e)
            except Exception as e:
                logger.exception("Unexpected error synchronizing %s", destination.name)
                error = WrapperError(f"Unexpected error: {e}", destination=destination.name)
                return SyncOutcome(destination.name, success=False, error=error)

        logger.info("Synchronized %s (%d files)", destination.name, len(files))
        return SyncOutcome(destination.name, success=True, file_count=len(files))

    # -------------------------------------------------------------------------
    # Fetch + transform
    # -------------------------------------------------------------------------

    def _collect(self, destination: Destination) -> dict[str, bytes]:
        """Fetch and transform every entry concurrently, then merge.

        Merging follows declaration order, so a later source overwrites an
        earlier one on path collisions regardless of completion order.
        """
        jobs = [
            _Job(source_name, source_set.transform, entry_name, entry)
            for source_name, source_set in destination.sources.items()
            for entry_name, entry in source_set.entries.items()
        ]
        if not jobs:
            return {}

        results: list[transform.FileSet] = [[] for _ in jobs]
        pool = ThreadPoolExecutor(
            max_workers=min(len(jobs), self.max_workers),
            thread_name_prefix=f"fetch-{destination.name}",
        )
        try:
            futures: dict[Future, int] = {
                pool.submit(self._fetch_entry, destination.name, job): index
                for index, job in enumerate(jobs)
            }
            pending = set(futures)
            while pending:
                if self.cancel_event.is_set():
                    raise SyncCancelled("Shutdown requested while fetching")
                done, pending = wait(pending, timeout=self.poll_interval, return_when=FIRST_COMPLETED)
                for future in done:
                    results[futures[future]] = future.result()
        finally:
            # In-flight fetches are abandoned rather than awaited
            pool.shutdown(wait=False, cancel_futures=True)

        merged: dict[str, bytes] = {}
        for files in results:
            for path, data in files:
                if path in merged:
                    logger.debug("%s: %s overwritten by a later source", destination.name, path)
                merged[path] = data
        return merged

    def _fetch_entry(self, destination: str, job: _Job) -> transform.FileSet:
        result = self.resolver.resolve(
            job.entry,
            job.entry_name,
            source=job.source,
            destination=destination,
        )
        try:
            return transform.apply(job.transform, result.payload, result.file_name)
        except TransformError as e:
            raise e.with_context(destination=destination, source=job.source, entry=job.entry_name)

    # -------------------------------------------------------------------------
    # Staging + swap
    # -------------------------------------------------------------------------

    def _cleanup_leftovers(self, target: Path) -> None:
        """Recover or remove siblings left behind by an interrupted run.

        A run interrupted between the two renames of a swap leaves no live
        directory and the previous contents in an ``.old-`` sibling; that
        sibling is renamed back before anything is deleted.
        """
        parent = target.parent
        if not parent.is_dir():
            return

        staging_prefix = f".{target.name}{STAGING_MARKER}"
        old_prefix = f".{target.name}{OLD_MARKER}"
        staging: list[Path] = []
        displaced: list[Path] = []
        for sibling in parent.iterdir():
            if sibling.name.startswith(staging_prefix):
                staging.append(sibling)
            elif sibling.name.startswith(old_prefix):
                displaced.append(sibling)

        if displaced and not target.exists():
            displaced.sort(key=lambda p: p.stat().st_mtime_ns)
            previous = displaced.pop()
            if displaced:
                logger.warning(
                    "Found %d displaced copies of %s; restoring the newest",
                    len(displaced) + 1, target.name,
                )
            try:
                os.rename(previous, target)
            except OSError as e:
                raise FilesystemError(f"Could not restore {previous}: {e}") from e
            logger.warning("Restored previous contents of %s from %s", target, previous.name)

        for leftover in staging + displaced:
            logger.info("Removing leftover %s", leftover)
            shutil.rmtree(leftover, ignore_errors=True)

    def _stage(self, target: Path, files: dict[str, bytes]) -> Path:
        """Write the file set into a fresh hidden sibling of *target*."""
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            staging = Path(tempfile.mkdtemp(prefix=f".{target.name}{STAGING_MARKER}", dir=target.parent))
        except OSError as e:
            raise FilesystemError(f"Could not create staging directory: {e}") from e

        try:
            if target.is_dir():
                shutil.copymode(target, staging)
            else:
                staging.chmod(0o755)
            for relative, data in files.items():
                path = staging / relative
                path.parent.mkdir(parents=True, exist_ok=True)
                path.write_bytes(data)
        except OSError as e:
            shutil.rmtree(staging, ignore_errors=True)
            raise FilesystemError(f"Could not write staging directory: {e}") from e
        return staging

    def _swap(self, staging: Path, target: Path) -> None:
        """Rename *staging* into place, displacing the previous directory."""
        if self.cancel_event.is_set():
            shutil.rmtree(staging, ignore_errors=True)
            raise SyncCancelled("Shutdown requested before swap")

        displaced: Path | None = None
        try:
            if target.exists():
                displaced = target.with_name(f".{target.name}{OLD_MARKER}{uuid.uuid4().hex[:8]}")
                os.rename(target, displaced)
            try:
                os.rename(staging, target)
            except OSError:
                if displaced is not None:
                    os.rename(displaced, target)
                    displaced = None
                raise
        except OSError as e:
            shutil.rmtree(staging, ignore_errors=True)
            raise FilesystemError(f"Could not swap in new contents: {e}") from e

        if displaced is not None:
            try:
                shutil.rmtree(displaced)
            except OSError as e:
                logger.warning("Could not remove displaced directory %s: %s", displaced, e)
