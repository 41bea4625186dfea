"""Job states, job types and the human-readable text that describes them."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from itertools import zip_longest
from typing import Optional, Sequence

__all__ = [
    "JobState",
    "JobType",
    "JobStats",
    "describe_node_list",
    "describe_state_transition",
    "failure_summary",
    "job_label",
]

_ROUGH_LIMIT = 40
_OTHER_TEXT = ", and XX other nodes"
_UNKNOWN_NODES = "some node(s)"


class JobState(Enum):
    """The state of a job."""

    #: Waiting to begin; no progress bar is shown.
    WAITING = "Waiting"
    RUNNING = "Running"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"

    def is_final(self) -> bool:
        """Return whether no further transitions are allowed."""
        return self in (JobState.SUCCEEDED, JobState.FAILED)


class JobType(Enum):
    """The type of a job."""

    META = "meta"
    EVALUATE = "evaluate"
    BUILD = "build"
    UPLOAD_KEYS = "upload-keys"
    PUSH = "push"
    ACTIVATE = "activate"
    EXECUTE = "execute"
    CREATE_GC_ROOTS = "create-gc-roots"
    REBOOT = "reboot"


@dataclass(frozen=True)
class JobStats:
    """Counts of jobs in each state."""

    waiting: int = 0
    running: int = 0
    succeeded: int = 0
    failed: int = 0

    def __str__(self) -> str:
        parts = (
            (self.running, "running"),
            (self.succeeded, "succeeded"),
            (self.failed, "failed"),
            (self.waiting, "waiting"),
        )
        return ", ".join(f"{count} {label}" for count, label in parts if count)


def describe_node_list(nodes: Sequence[str]) -> Optional[str]:
    """Return a short description of a list of nodes, or None if it is empty.

    Example: "alpha, beta, and 5 other nodes".
    """
    total = len(nodes)
    if total == 0:
        return None

    text = ""
    names = [str(node) for node in nodes]
    for index, (node, following) in enumerate(zip_longest(names, names[1:])):
        if text:
            if following is None:
                text += ", and " if total > 2 else " and "
            else:
                text += ", "

        text += node

        if following is None:
            break

        remaining_text = _ROUGH_LIMIT - len(text)
        remaining_nodes = total - (index + 1)

        if len(following) + len(_OTHER_TEXT) >= remaining_text:
            if remaining_nodes == 1:
                text += f", and {following}"
            else:
                text += f", and {remaining_nodes} other nodes"
            break

    return text


def describe_state_transition(
    job_type: JobType,
    state: JobState,
    nodes: Sequence[str],
    custom_message: Optional[str],
) -> Optional[str]:
    """Describe the transition of a job into ``state``; None while waiting."""
    if state is JobState.WAITING:
        return None

    node_list = describe_node_list(nodes) or _UNKNOWN_NODES
    message = custom_message if custom_message is not None else "No message"

    match (job_type, state):
        case (JobType.META, JobState.SUCCEEDED):
            return "All done!"

        case (JobType.EVALUATE, JobState.RUNNING):
            return f"Evaluating {node_list}"
        case (JobType.EVALUATE, JobState.SUCCEEDED):
            return f"Evaluated {node_list}"
        case (JobType.EVALUATE, JobState.FAILED):
            return f"Evaluation failed: {message}"

        case (JobType.BUILD, JobState.RUNNING):
            return f"Building {node_list}"
        case (JobType.BUILD, JobState.SUCCEEDED):
            return f"Built {node_list}"
        case (JobType.BUILD, JobState.FAILED):
            return f"Build failed: {message}"

        case (JobType.PUSH, JobState.RUNNING):
            return "Pushing system closure"
        case (JobType.PUSH, JobState.SUCCEEDED):
            return "Pushed system closure"
        case (JobType.PUSH, JobState.FAILED):
            return f"Push failed: {message}"

        case (JobType.UPLOAD_KEYS, JobState.RUNNING):
            return "Uploading keys"
        case (JobType.UPLOAD_KEYS, JobState.SUCCEEDED):
            return "Uploaded keys"
        case (JobType.UPLOAD_KEYS, JobState.FAILED):
            return f"Key upload failed: {message}"

        case (JobType.ACTIVATE, JobState.RUNNING):
            return "Activating system profile"
        case (JobType.ACTIVATE, JobState.FAILED):
            return f"Activation failed: {message}"

        case (JobType.REBOOT, JobState.RUNNING):
            return "Rebooting"
        case (JobType.REBOOT, JobState.SUCCEEDED):
            return "Rebooted"
        case (JobType.REBOOT, JobState.FAILED):
            return f"Reboot failed: {message}"

        case (_, JobState.FAILED):
            return f"Failed: {message}"
        case (_, JobState.SUCCEEDED):
            return "Succeeded"
        case _:
            return ""


def failure_summary(job_type: JobType, nodes: Sequence[str]) -> str:
    """Describe a failed job for the final summary."""
    node_list = describe_node_list(nodes) or _UNKNOWN_NODES

    match job_type:
        case JobType.EVALUATE:
            return f"Failed to evaluate {node_list}"
        case JobType.BUILD:
            return f"Failed to build {node_list}"
        case JobType.PUSH:
            return f"Failed to push system closure to {node_list}"
        case JobType.UPLOAD_KEYS:
            return f"Failed to upload keys to {node_list}"
        case JobType.ACTIVATE:
            return f"Failed to deploy to {node_list}"
        case JobType.REBOOT:
            return f"Failed to reboot {node_list}"
        case JobType.META:
            return "Failed to complete requested operation"
        case _:
            return f"Failed to complete job on {node_list}"


def job_label(job_type: JobType, nodes: Sequence[str]) -> str:
    """Return the short label shown next to a job's progress line."""
    if job_type is JobType.META:
        return ""
    if len(nodes) != 1:
        return "(...)"
    return str(nodes[0])