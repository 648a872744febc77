"""Supervise the wrapped server: sync, launch, wait, restart."""

import logging
import shlex
import subprocess
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable

from ..errors import NotifyError, ProcessError
from ..models.config import DEFAULT_MIN_RESTART_INTERVAL, STARTUP_TRIGGER
from .notify import EventKind, Notifier, NullNotifier, StatusEvent
from .sync import SyncOutcome
from .triggers import TriggerRouter

logger = logging.getLogger(__name__)


class State:
    """Supervisor states.

    idle -> starting -> running -> exited -> restarting -> starting -> ...
    stopped is terminal and only reached through stop().
    """

    IDLE = "idle"
    STARTING = "starting"
    RUNNING = "running"
    EXITED = "exited"
    RESTARTING = "restarting"
    STOPPED = "stopped"


class LifecycleKind:
    """Kinds of lifecycle event."""

    STARTED = "started"
    EXITED = "exited"
    RESTARTING = "restarting"
    STOPPED = "stopped"


@dataclass
class LifecycleEvent:
    """Process lifecycle event for listeners (logging, telemetry)."""

    kind: str
    exit_code: int | None = None
    details: str = ""


@dataclass
class CommandResult:
    """Outcome of one command of the sequence."""

    command: str
    exit_code: int | None = None  # None if it never launched
    error: str = ""

    @property
    def success(self) -> bool:
        return self.exit_code == 0


@dataclass
class RunRecord:
    """One full run of the command sequence."""

    results: list[CommandResult] = field(default_factory=list)
    started: float = 0.0
    finished: float = 0.0

    @property
    def duration(self) -> float:
        return max(0.0, self.finished - self.started)

    @property
    def exit_code(self) -> int | None:
        return self.results[-1].exit_code if self.results else None


class ProcessSupervisor:
    """Runs the command sequence forever, resyncing before every launch."""

    def __init__(
        self,
        commands: list[str],
        router: TriggerRouter,
        notifier: Notifier | None = None,
        min_restart_interval: float = DEFAULT_MIN_RESTART_INTERVAL,
        stop_on_failure: bool = False,
        stop_event: threading.Event | None = None,
        terminate_timeout: float = 30,
        poll_interval: float = 0.5,
        cwd: Path | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize supervisor.

        Args:
            commands: Shell-style command strings, run one after another
            router: TriggerRouter used to fire the startup trigger
            notifier: Receives started/restarted status events
            min_restart_interval: Runs shorter than this are followed by a
                cool-down that makes up the difference
            stop_on_failure: Abort the sequence at the first failing command
            stop_event: Shared shutdown flag (also cancels in-flight syncs)
            terminate_timeout: Seconds to wait after SIGTERM before killing
            poll_interval: How often a waiting child is checked for shutdown
            cwd: Working directory of the commands
            clock: Monotonic time source
        """
        self.commands = list(commands)
        self.router = router
        self.notifier = notifier or NullNotifier()
        self.min_restart_interval = min_restart_interval
        self.stop_on_failure = stop_on_failure
        self.stop_event = stop_event or threading.Event()
        self.terminate_timeout = terminate_timeout
        self.poll_interval = poll_interval
        self.cwd = cwd
        self.clock = clock

        self.state = State.IDLE
        self.runs: list[RunRecord] = []
        self._listeners: list[Callable[[LifecycleEvent], None]] = []
        self._process: subprocess.Popen | None = None
        self._process_lock = threading.RLock()

    # -------------------------------------------------------------------------
    # Listeners and notifications
    # -------------------------------------------------------------------------

    def add_listener(self, listener: Callable[[LifecycleEvent], None]) -> None:
        """Register a callback for lifecycle events."""
        self._listeners.append(listener)

    def _emit(self, event: LifecycleEvent) -> None:
        for listener in self._listeners:
            try:
                listener(event)
            except Exception:
                logger.exception("Error in lifecycle listener")

    def _notify(self, event: StatusEvent) -> None:
        try:
            self.notifier.notify(event)
        except NotifyError as e:
            logger.warning("Status notification failed: %s", e)

    def _transition(self, state: str) -> None:
        logger.debug("Supervisor %s -> %s", self.state, state)
        self.state = state

    # -------------------------------------------------------------------------
    # Main loop
    # -------------------------------------------------------------------------

    def run(self, max_cycles: int | None = None) -> str:
        """Supervise until stop() is called.

        Args:
            max_cycles: Return after this many completed sequence runs

        Returns:
            The final state
        """
        while not self.stop_event.is_set():
            self._transition(State.STARTING)
            self._prepare()
            if self.stop_event.is_set():
                break

            self._notify(StatusEvent(EventKind.STARTED))
            self._transition(State.RUNNING)
            self._emit(LifecycleEvent(LifecycleKind.STARTED))

            record = self._run_sequence()
            self.runs.append(record)
            if self.stop_event.is_set():
                break

            self._transition(State.EXITED)
            self._emit(LifecycleEvent(LifecycleKind.EXITED, exit_code=record.exit_code))

            delay = max(0.0, self.min_restart_interval - record.duration)
            if delay > 0:
                logger.warning("Server restarted very quickly, waiting %.0fs", delay)
                details = f"Restarted too quickly! Waiting for {delay:.0f} seconds..."
            else:
                details = ""
            self._notify(StatusEvent(EventKind.RESTARTED, details))

            if max_cycles is not None and len(self.runs) >= max_cycles:
                return self.state

            self._transition(State.RESTARTING)
            self._emit(LifecycleEvent(LifecycleKind.RESTARTING, details=details))
            if delay > 0 and self.stop_event.wait(delay):
                break

        self._transition(State.STOPPED)
        self._emit(LifecycleEvent(LifecycleKind.STOPPED))
        logger.info("Supervisor stopped")
        return self.state

    def _prepare(self) -> dict[str, SyncOutcome]:
        """Fire the startup trigger and block until every sync finishes."""
        outcomes = self.router.fire(STARTUP_TRIGGER)
        failed = [o for o in outcomes.values() if not o.success and not o.cancelled]
        for outcome in failed:
            logger.error("Destination %s not updated: %s", outcome.destination, outcome.message)
        if failed:
            names = ", ".join(o.destination for o in failed)
            self._notify(StatusEvent(EventKind.SYNC_FAILED, f"Kept previous contents of: {names}"))
        return outcomes

    def _run_sequence(self) -> RunRecord:
        """Run every command in order, each waiting for the previous one."""
        record = RunRecord(started=self.clock())
        for command in self.commands:
            if self.stop_event.is_set():
                break
            try:
                exit_code = self._run_command(command)
            except ProcessError as e:
                logger.error("%s", e)
                record.results.append(CommandResult(command, error=str(e)))
            else:
                if exit_code is None:
                    break
                logger.info("%r exited with code %d", command, exit_code)
                record.results.append(CommandResult(command, exit_code=exit_code))

            if self.stop_on_failure and not record.results[-1].success:
                logger.warning("Stopping sequence after failed command %r", command)
                break
        record.finished = self.clock()
        return record

    def _run_command(self, command: str) -> int | None:
        """Launch one command and wait for it.

        Returns:
            The exit code, or None if shutdown prevented the launch

        Raises:
            ProcessError: If the command cannot be launched
        """
        args = shlex.split(command)
        if not args:
            raise ProcessError(f"Empty command {command!r}")

        with self._process_lock:
            if self.stop_event.is_set():
                return None
            logger.info("Executing: %r", command)
            try:
                process = subprocess.Popen(args, cwd=self.cwd)
            except OSError as e:
                raise ProcessError(f"Failed to launch {command!r}: {e}") from e
            self._process = process

        try:
            return self._wait(process)
        finally:
            with self._process_lock:
                self._process = None

    def _wait(self, process: subprocess.Popen) -> int:
        """Wait for the child, escalating to kill if shutdown stalls."""
        while not self.stop_event.is_set():
            try:
                return process.wait(timeout=self.poll_interval)
            except subprocess.TimeoutExpired:
                continue

        if process.poll() is None:
            process.terminate()
        try:
            return process.wait(timeout=self.terminate_timeout)
        except subprocess.TimeoutExpired:
            logger.warning("Process did not exit after %.0fs, killing it", self.terminate_timeout)
            process.kill()
            return process.wait()

    # -------------------------------------------------------------------------
    # Shutdown
    # -------------------------------------------------------------------------

    def stop(self) -> None:
        """Request shutdown; safe to call from a signal handler or thread.

        Forwards SIGTERM to the running child, cancels in-flight syncs, and
        makes run() end in the stopped state without restarting.
        """
        logger.info("Stop requested")
        self.stop_event.set()
        with self._process_lock:
            process = self._process
        if process is not None and process.poll() is None:
            process.terminate()
