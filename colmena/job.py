"""Job control.

Jobs report events through a queue to a job monitor, which keeps track of
their states and forwards human-readable lines to a progress output.
"""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Awaitable, Callable, ClassVar, Optional, Sequence, TypeVar
from uuid import UUID, uuid4

from .errors import UnknownError
from .jobinfo import (
    JobState,
    JobStats,
    JobType,
    describe_state_transition,
    failure_summary,
    job_label,
)

__all__ = [
    "LineStyle",
    "Line",
    "ProgressMessage",
    "EventKind",
    "Event",
    "JobHandle",
    "MetaJobHandle",
    "JobMonitor",
    "create_monitor",
    "null_job_handle",
]

logger = logging.getLogger(__name__)

T = TypeVar("T")

#: Maximum number of log lines shown for each failed job.
LOG_CONTEXT_LINES = 20

#: A progress sender receives every message destined for the progress output.
ProgressSender = Callable[["ProgressMessage"], None]


class LineStyle(Enum):
    """How a progress line is rendered."""

    NORMAL = "normal"
    SUCCESS = "success"
    #: Succeeded without doing anything; the spinner should disappear.
    SUCCESS_NOOP = "success-noop"
    FAILURE = "failure"


@dataclass(frozen=True)
class Line:
    """A line of progress output belonging to a job."""

    job_id: UUID
    text: str
    style: LineStyle = LineStyle.NORMAL
    label: str = ""
    #: Noisy lines may be hidden by outputs that only show important lines.
    noisy: bool = False


@dataclass(frozen=True)
class ProgressMessage:
    """A message sent to the progress output."""

    HINT_LABEL_WIDTH: ClassVar[str] = "hint-label-width"
    PRINT: ClassVar[str] = "print"
    PRINT_META: ClassVar[str] = "print-meta"
    COMPLETE: ClassVar[str] = "complete"

    kind: str
    line: Optional[Line] = None
    width: Optional[int] = None


class EventKind(Enum):
    """The kind of an event sent from a job to the monitor."""

    CREATION = "creation"
    SUCCESS_WITH_MESSAGE = "success-with-message"
    FAILURE = "failure"
    NOOP = "noop"
    NEW_STATE = "new-state"
    CHILD_STDOUT = "child-stdout"
    CHILD_STDERR = "child-stderr"
    MESSAGE = "message"
    #: Sent by the meta job when it returns, regardless of the outcome.
    SHUTDOWN_MONITOR = "shutdown-monitor"


@dataclass(frozen=True)
class _JobCreation:
    job_type: JobType
    nodes: tuple[str, ...]


@dataclass(frozen=True)
class Event:
    """An event concerning one job."""

    job_id: UUID
    kind: EventKind
    payload: Any = None

    def __str__(self) -> str:
        match self.kind:
            case EventKind.CHILD_STDOUT:
                return f"  stdout) {self.payload}"
            case EventKind.CHILD_STDERR:
                return f"  stderr) {self.payload}"
            case EventKind.MESSAGE:
                return f" message) {self.payload}"
            case EventKind.CREATION:
                return " created)"
            case EventKind.NEW_STATE:
                return f"   state) {self.payload.value}"
            case EventKind.SUCCESS_WITH_MESSAGE:
                return f" success) {self.payload}"
            case EventKind.NOOP:
                return f"    noop) {self.payload}"
            case EventKind.FAILURE:
                return f" failure) {self.payload}"
            case _:
                return "shutdown)"


class JobHandle:
    """A handle through which a job reports to the monitor.

    A handle without a queue is not connected to any monitor and only
    logs its events at debug level.
    """

    def __init__(
        self,
        job_id: Optional[UUID] = None,
        sender: Optional[asyncio.Queue] = None,
    ) -> None:
        self.job_id = job_id if job_id is not None else uuid4()
        self._sender = sender

    def create_job(self, job_type: JobType, nodes: Sequence[str]) -> "JobHandle":
        """Create a new job sharing this handle's monitor."""
        if job_type is JobType.META:
            raise UnknownError("Cannot create a meta job!")
        handle = JobHandle(uuid4(), self._sender)
        handle._send(EventKind.CREATION, _JobCreation(job_type, tuple(str(n) for n in nodes)))
        return handle

    async def run(self, func: Callable[["JobHandle"], Awaitable[T]]) -> T:
        """Run ``func``, reporting Running now and the outcome afterwards."""
        return await self._run(func, report_running=True)

    async def run_waiting(self, func: Callable[["JobHandle"], Awaitable[T]]) -> T:
        """Run ``func`` without reporting Running; ``func`` does that itself."""
        return await self._run(func, report_running=False)

    def stdout(self, output: str) -> None:
        self._send(EventKind.CHILD_STDOUT, output)

    def stderr(self, output: str) -> None:
        self._send(EventKind.CHILD_STDERR, output)

    def message(self, message: str) -> None:
        self._send(EventKind.MESSAGE, message)

    def state(self, new_state: JobState) -> None:
        self._send(EventKind.NEW_STATE, new_state)

    def success_with_message(self, message: str) -> None:
        self._send(EventKind.SUCCESS_WITH_MESSAGE, message)

    def noop(self, message: str) -> None:
        self._send(EventKind.NOOP, message)

    def failure(self, error: BaseException | str) -> None:
        self._send(EventKind.FAILURE, str(error))

    async def _run(
        self, func: Callable[["JobHandle"], Awaitable[T]], report_running: bool
    ) -> T:
        if report_running:
            self.state(JobState.RUNNING)
        try:
            value = await func(self)
        except Exception as exc:
            self.failure(exc)
            raise
        self.state(JobState.SUCCEEDED)
        return value

    def _send(self, kind: EventKind, payload: Any = None) -> None:
        if kind is EventKind.SHUTDOWN_MONITOR:
            raise RuntimeError("Tried to send privileged payload with JobHandle")
        event = Event(self.job_id, kind, payload)
        if self._sender is not None:
            self._sender.put_nowait(event)
        else:
            logger.debug("Sending event: %r", event)


class MetaJobHandle:
    """The handle of the meta job, which shuts the monitor down when it ends."""

    def __init__(self, job_id: UUID, sender: asyncio.Queue) -> None:
        self.job_id = job_id
        self._sender = sender

    async def run(self, func: Callable[[JobHandle], Awaitable[T]]) -> T:
        """Run ``func`` as the meta job, then tell the monitor to shut down."""
        handle = JobHandle(self.job_id, self._sender)
        try:
            value = await func(handle)
        except Exception as exc:
            self._send(EventKind.FAILURE, str(exc))
            raise
        else:
            self._send(EventKind.NEW_STATE, JobState.SUCCEEDED)
            return value
        finally:
            self._send(EventKind.SHUTDOWN_MONITOR)

    def _send(self, kind: EventKind, payload: Any = None) -> None:
        self._sender.put_nowait(Event(self.job_id, kind, payload))


@dataclass
class _JobMetadata:
    job_id: UUID
    job_type: JobType
    nodes: tuple[str, ...] = ()
    state: JobState = JobState.WAITING
    custom_message: Optional[str] = None

    def line(self, text: str) -> Line:
        if self.state is JobState.SUCCEEDED:
            style = LineStyle.SUCCESS
        elif self.state is JobState.FAILED:
            style = LineStyle.FAILURE
        else:
            style = LineStyle.NORMAL
        return Line(self.job_id, text, style, job_label(self.job_type, self.nodes))

    def describe_transition(self) -> Optional[str]:
        return describe_state_transition(
            self.job_type, self.state, self.nodes, self.custom_message
        )


class JobMonitor:
    """Coordinator of all job states.

    It receives events from jobs and forwards progress lines to the
    progress sender, if any.
    """

    #: Seconds to wait after completion so the progress output can settle.
    finish_delay: float = 1.0

    def __init__(self, progress: Optional[ProgressSender] = None) -> None:
        self._queue: asyncio.Queue = asyncio.Queue()
        self._progress = progress
        self.meta_job_id = uuid4()
        self.events: list[Event] = []
        self.jobs: dict[UUID, _JobMetadata] = {
            self.meta_job_id: _JobMetadata(
                self.meta_job_id, JobType.META, state=JobState.RUNNING
            )
        }
        self.label_width: Optional[int] = None

    def set_label_width(self, width: int) -> None:
        """Set the estimated maximum label width."""
        self.label_width = width

    async def run_until_completion(self) -> "JobMonitor":
        """Process events until the meta job finishes."""
        if self.label_width is not None and self._progress is not None:
            self._progress(
                ProgressMessage(ProgressMessage.HINT_LABEL_WIDTH, width=self.label_width)
            )

        while True:
            event: Event = await self._queue.get()
            kind = event.kind

            if kind is EventKind.CREATION:
                if event.job_id in self.jobs:
                    raise RuntimeError(f"Job {event.job_id} was created twice")
                creation: _JobCreation = event.payload
                self.jobs[event.job_id] = _JobMetadata(
                    event.job_id, creation.job_type, creation.nodes
                )
            elif kind is EventKind.SHUTDOWN_MONITOR:
                if event.job_id != self.meta_job_id:
                    raise RuntimeError("Only the meta job may shut down the monitor")
                return await self._finish()
            elif kind is EventKind.NEW_STATE:
                self._update_job_state(event.job_id, event.payload, None, False)
                self._print_job_stats_for(event.job_id)
            elif kind is EventKind.SUCCESS_WITH_MESSAGE:
                self._update_job_state(event.job_id, JobState.SUCCEEDED, event.payload, False)
                self._print_job_stats_for(event.job_id)
            elif kind is EventKind.NOOP:
                self._update_job_state(event.job_id, JobState.SUCCEEDED, event.payload, True)
                self._print_job_stats_for(event.job_id)
            elif kind is EventKind.FAILURE:
                self._update_job_state(event.job_id, JobState.FAILED, event.payload, False)
                self._print_job_stats_for(event.job_id)
            elif self._progress is not None:
                line = self.jobs[event.job_id].line(event.payload)
                self._progress(self._print_message(event.job_id, line))

            self.events.append(event)

    def _update_job_state(
        self,
        job_id: UUID,
        new_state: JobState,
        message: Optional[str],
        noop: bool,
    ) -> None:
        metadata = self.jobs[job_id]
        old_state = metadata.state

        if old_state is new_state:
            return
        if old_state.is_final():
            logger.debug("Tried to update the state of a finished job")
            return

        metadata.state = new_state
        if message is not None:
            metadata.custom_message = message

        if new_state is JobState.WAITING or self._progress is None:
            return

        if new_state is JobState.SUCCEEDED and metadata.custom_message is not None:
            text: Optional[str] = metadata.custom_message
        else:
            text = metadata.describe_transition()

        if text is not None:
            line = metadata.line(text)
            if noop:
                line = replace(line, style=LineStyle.SUCCESS_NOOP)
            self._progress(self._print_message(job_id, line))

    def _print_job_stats_for(self, job_id: UUID) -> None:
        if job_id == self.meta_job_id or self._progress is None:
            return
        text = str(self._job_stats())
        line = replace(self.jobs[self.meta_job_id].line(text), noisy=True)
        self._progress(ProgressMessage(ProgressMessage.PRINT_META, line=line))

    def _job_stats(self) -> JobStats:
        counts = Counter(
            job.state for job in self.jobs.values() if job.job_id != self.meta_job_id
        )
        return JobStats(
            waiting=counts[JobState.WAITING],
            running=counts[JobState.RUNNING],
            succeeded=counts[JobState.SUCCEEDED],
            failed=counts[JobState.FAILED],
        )

    def _print_message(self, job_id: UUID, line: Line) -> ProgressMessage:
        if job_id == self.meta_job_id:
            return ProgressMessage(ProgressMessage.PRINT_META, line=line)
        return ProgressMessage(ProgressMessage.PRINT, line=line)

    async def _finish(self) -> "JobMonitor":
        progress, self._progress = self._progress, None
        if progress is not None:
            progress(ProgressMessage(ProgressMessage.COMPLETE))
            await asyncio.sleep(self.finish_delay)

        for job in self.jobs.values():
            if job.state is not JobState.FAILED:
                continue
            logs = [event for event in self.events if event.job_id == job.job_id]
            last_logs = logs[-LOG_CONTEXT_LINES:]
            logger.error(
                "%s - Last %d lines of logs:",
                failure_summary(job.job_type, job.nodes),
                len(last_logs),
            )
            for event in last_logs:
                logger.error("%s", event)

        return self


def create_monitor(
    progress: Optional[ProgressSender] = None,
) -> tuple[JobMonitor, MetaJobHandle]:
    """Create a job monitor together with the handle of its meta job."""
    monitor = JobMonitor(progress)
    meta = MetaJobHandle(monitor.meta_job_id, monitor._queue)
    return monitor, meta


def null_job_handle() -> JobHandle:
    """Return a job handle that is not connected to any monitor."""
    return JobHandle()