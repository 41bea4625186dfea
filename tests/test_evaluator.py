import asyncio
import json
import stat
import sys
from pathlib import Path

import pytest

from colmena.errors import BadOutput, ChildFailure, IoError, UnknownError
from colmena.evaluator import (
    AttributeFailure,
    AttributeOutput,
    GlobalFailure,
    NixEvalJobs,
    get_pinned_nix_eval_jobs,
    parse_eval_line,
)
from colmena.expression import NixExpression
from colmena.job import EventKind, JobHandle


def _fake_program(tmp_path: Path, body: str) -> Path:
    script = tmp_path / "fake-nix-eval-jobs"
    script.write_text(f"#!{sys.executable}\nimport sys, json\n{body}\n")
    script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return script


async def _collect(evaluator, expression, extra_args=()):
    stream = await evaluator.evaluate(expression, extra_args)
    return [item async for item in stream]


class _FlakeExpression(NixExpression):
    def expression(self) -> str:
        return "flake-expr"

    def requires_flakes(self) -> bool:
        return True


def test_parse_derivation_line():
    line = json.dumps({"attr": "a", "drvPath": "/nix/store/abc-a.drv", "system": "x"})
    assert parse_eval_line(line) == AttributeOutput("a", "/nix/store/abc-a.drv")


def test_parse_derivation_trims_quotes():
    line = json.dumps({"attr": '"a.b"', "drvPath": "/nix/store/x.drv"})
    assert parse_eval_line(line).attribute == "a.b"


def test_parse_attribute_error_line():
    line = json.dumps({"attr": "b", "error": "an error"})
    assert parse_eval_line(line) == AttributeFailure("b", "an error")


def test_parse_global_error_line():
    result = parse_eval_line(json.dumps({"error": "boom"}))
    assert isinstance(result, GlobalFailure)
    assert isinstance(result.error, UnknownError)
    assert result.error.message == "boom"


@pytest.mark.parametrize("line", ["gibberish", "", "[1, 2]", '{"attr": "a"}'])
def test_parse_bad_lines(line):
    with pytest.raises(BadOutput):
        parse_eval_line(line)


def test_pinned_from_environment(monkeypatch):
    monkeypatch.setenv("NIX_EVAL_JOBS", "/opt/nix-eval-jobs")
    assert get_pinned_nix_eval_jobs() == "/opt/nix-eval-jobs"
    assert NixEvalJobs().executable == Path("/opt/nix-eval-jobs")


def test_unpinned_default(monkeypatch):
    monkeypatch.delenv("NIX_EVAL_JOBS", raising=False)
    assert get_pinned_nix_eval_jobs() is None
    evaluator = NixEvalJobs()
    assert evaluator.executable == Path("nix-eval-jobs")
    assert evaluator.workers == 10


def test_set_eval_limit():
    evaluator = NixEvalJobs("x")
    evaluator.set_eval_limit(3)
    assert evaluator.workers == 3


@pytest.mark.asyncio
async def test_eval(tmp_path):
    program = _fake_program(
        tmp_path,
        'print(json.dumps({"attr": "a", "drvPath": "/nix/store/a.drv"}))\n'
        'print(json.dumps({"attr": "b", "drvPath": "/nix/store/b.drv"}))',
    )
    results = await _collect(NixEvalJobs(program), "{ a = 1; b = 2; }")
    assert len(results) == 2
    assert all(isinstance(r, AttributeOutput) for r in results)
    assert [r.attribute for r in results] == ["a", "b"]


@pytest.mark.asyncio
async def test_global_error(tmp_path):
    program = _fake_program(tmp_path, "sys.stderr.write('error: gibberish\\n')\nsys.exit(1)")
    results = await _collect(NixEvalJobs(program), "gibberish")
    assert len(results) == 1
    assert isinstance(results[0], GlobalFailure)
    assert isinstance(results[0].error, ChildFailure)
    assert results[0].error.exit_code == 1


@pytest.mark.asyncio
async def test_attribute_error(tmp_path):
    program = _fake_program(
        tmp_path,
        'print(json.dumps({"attr": "a", "drvPath": "/nix/store/a.drv"}))\n'
        'print(json.dumps({"attr": "b", "error": "an error"}))',
    )
    results = await _collect(NixEvalJobs(program), "expr")
    assert len(results) == 2
    for result in results:
        if isinstance(result, AttributeOutput):
            assert result.attribute == "a"
        else:
            assert isinstance(result, AttributeFailure)
            assert result.attribute == "b"


@pytest.mark.asyncio
async def test_bad_output_stops_stream(tmp_path):
    program = _fake_program(
        tmp_path,
        'print("not json")\nprint(json.dumps({"attr": "a", "drvPath": "/nix/store/a.drv"}))',
    )
    results = await _collect(NixEvalJobs(program), "expr")
    assert len(results) == 1
    assert isinstance(results[0].error, BadOutput)


@pytest.mark.asyncio
async def test_command_line(tmp_path):
    record = tmp_path / "argv.json"
    program = _fake_program(
        tmp_path, f"open({str(record)!r}, 'w').write(json.dumps(sys.argv[1:]))"
    )
    results = await _collect(NixEvalJobs(program, workers=4), _FlakeExpression(), ["--impure"])
    assert results == []
    assert json.loads(record.read_text()) == [
        "--workers",
        "4",
        "--expr",
        "flake-expr",
        "--impure",
        "--extra-experimental-features",
        "flakes",
    ]


@pytest.mark.asyncio
async def test_stderr_forwarded_to_job(tmp_path):
    program = _fake_program(tmp_path, "sys.stderr.write('warning: hello\\n')")
    queue: asyncio.Queue = asyncio.Queue()
    job = JobHandle(sender=queue)
    evaluator = NixEvalJobs(program)
    evaluator.set_job(job)
    results = await _collect(evaluator, "expr")
    assert results == []
    event = queue.get_nowait()
    assert event.kind is EventKind.CHILD_STDERR
    assert event.payload == "warning: hello"
    assert event.job_id == job.job_id


@pytest.mark.asyncio
async def test_missing_executable(tmp_path):
    evaluator = NixEvalJobs(tmp_path / "does-not-exist")
    with pytest.raises(IoError):
        await evaluator.evaluate("expr")