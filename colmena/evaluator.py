"""Evaluation of attribute sets of derivations with nix-eval-jobs.

nix-eval-jobs evaluates attributes in parallel and reports each one as soon
as it is done, so results are produced as an asynchronous stream.
The executable may be pinned with the ``NIX_EVAL_JOBS`` environment variable.
"""

from __future__ import annotations

import asyncio
import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator, Optional, Sequence, Union

from .errors import BadOutput, ColmenaError, IoError, UnknownError, from_returncode
from .expression import NixExpression, expression_text
from .job import JobHandle, null_job_handle

__all__ = [
    "AttributeOutput",
    "AttributeFailure",
    "GlobalFailure",
    "EvalResult",
    "parse_eval_line",
    "NixEvalJobs",
    "get_pinned_nix_eval_jobs",
]

_DEFAULT_EXECUTABLE = "nix-eval-jobs"
_DEFAULT_WORKERS = 10
_STREAM_LIMIT = 1 << 24
_NO_VARIANT = "data did not match any variant of untagged enum EvalLine"


@dataclass(frozen=True)
class AttributeOutput:
    """The evaluation output of one attribute."""

    attribute: str
    drv_path: str


@dataclass(frozen=True)
class AttributeFailure:
    """An error confined to a single attribute."""

    attribute: str
    error: str


@dataclass(frozen=True)
class GlobalFailure:
    """An error affecting the entire evaluation."""

    error: ColmenaError


EvalResult = Union[AttributeOutput, AttributeFailure, GlobalFailure]


def parse_eval_line(line: str) -> EvalResult:
    """Parse one line of nix-eval-jobs output.

    Raises BadOutput if the line is not one of the known shapes.
    """
    try:
        obj = json.loads(line.strip())
    except ValueError as exc:
        raise BadOutput(str(exc)) from None

    if not isinstance(obj, dict):
        raise BadOutput(_NO_VARIANT)

    attribute = obj.get("attr")
    drv_path = obj.get("drvPath")
    error = obj.get("error")

    if isinstance(attribute, str) and isinstance(drv_path, str):
        # Attribute names containing dots come back wrapped in quotes.
        return AttributeOutput(attribute.strip('"'), drv_path)
    if isinstance(attribute, str) and isinstance(error, str):
        return AttributeFailure(attribute, error)
    if isinstance(error, str):
        return GlobalFailure(UnknownError(error))
    raise BadOutput(_NO_VARIANT)


def get_pinned_nix_eval_jobs() -> Optional[str]:
    """Return the pinned nix-eval-jobs executable, if one is configured."""
    return os.environ.get("NIX_EVAL_JOBS") or None


class NixEvalJobs:
    """An evaluator backed by the nix-eval-jobs program."""

    def __init__(
        self,
        executable: Union[str, Path, None] = None,
        workers: int = _DEFAULT_WORKERS,
        job: Optional[JobHandle] = None,
    ) -> None:
        if executable is None:
            executable = get_pinned_nix_eval_jobs() or _DEFAULT_EXECUTABLE
        self.executable = Path(executable)
        self.workers = workers
        self.job = job if job is not None else null_job_handle()

    def set_eval_limit(self, limit: int) -> None:
        """Set the maximum number of attributes evaluated at the same time."""
        self.workers = limit

    def set_job(self, job: JobHandle) -> None:
        """Set the job handle that receives the evaluator's stderr."""
        self.job = job

    def _command(
        self, expression: Union[str, NixExpression], extra_args: Sequence[str]
    ) -> list[str]:
        command = [
            str(self.executable),
            "--workers",
            str(self.workers),
            "--expr",
            expression_text(expression),
            *extra_args,
        ]
        if isinstance(expression, NixExpression) and expression.requires_flakes():
            command += ["--extra-experimental-features", "flakes"]
        return command

    async def evaluate(
        self,
        expression: Union[str, NixExpression],
        extra_args: Sequence[str] = (),
    ) -> AsyncIterator[EvalResult]:
        """Start the evaluation and return a stream of results.

        Raises IoError if the program cannot be started. Failures after
        that point are reported in the stream as GlobalFailure items.
        """
        command = self._command(expression, extra_args)
        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                limit=_STREAM_LIMIT,
            )
        except OSError as exc:
            raise IoError(exc) from exc

        stderr_task = asyncio.ensure_future(_forward_stderr(process.stderr, self.job))
        return self._results(process, stderr_task)

    async def _results(
        self, process: asyncio.subprocess.Process, stderr_task: asyncio.Future
    ) -> AsyncIterator[EvalResult]:
        assert process.stdout is not None
        while True:
            try:
                raw = await process.stdout.readline()
            except (OSError, ValueError) as exc:
                yield GlobalFailure(IoError(exc))
                break

            if not raw:
                returncode = await process.wait()
                await stderr_task
                if returncode != 0:
                    yield GlobalFailure(from_returncode(returncode))
                break

            line = raw.decode("utf-8", errors="replace")
            try:
                result = parse_eval_line(line)
            except BadOutput as exc:
                yield GlobalFailure(exc)
                break
            yield result


async def _forward_stderr(stream: Optional[asyncio.StreamReader], job: JobHandle) -> None:
    if stream is None:
        return
    while True:
        try:
            raw = await stream.readline()
        except (OSError, ValueError):
            return
        if not raw:
            return
        job.stderr(raw.decode("utf-8", errors="replace").rstrip("\r\n"))