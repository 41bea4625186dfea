# colmena

Asynchronous building blocks for deploying NixOS configurations to many hosts.

## What is in the package

- `colmena.goal` – `Goal`, the deployment goals `build`, `push`, `switch`,
  `boot`, `test`, `dry-activate` and `keys`. `Goal.parse()` reads the
  command-line spelling; `activation_verb()`, `success_str()`,
  `should_switch_profile()`, `requires_activation()`,
  `persists_after_reboot()` and `requires_target_host()` say what a goal
  implies.
- `colmena.limits` – `ParallelismLimit`, a pair of `asyncio.Semaphore`s for
  concurrent evaluation (default 1) and applies (default 10), and
  `EvaluationNodeLimit`, which caps the number of nodes per evaluation
  process. `EvaluationNodeLimit.parse()` accepts `auto` (a heuristic based on
  `MemAvailable` in `/proc/meminfo`, falling back to 10), `0` (no limit) or a
  positive number. `get_limit()` returns the cap, or `None` for no limit.
- `colmena.options` – the `Options` dataclass of deployment settings and
  `EvaluatorType` (`chunked` or `streaming`).
- `colmena.expression` – the `NixExpression` base class,
  `SerializedNixExpression`, which embeds any JSON-serializable value as
  `(builtins.fromJSON "...")`, `nix_quote()` and `expression_text()`.
- `colmena.flake` – `Flake` and `FlakeMetadata`, resolved by running
  `nix flake metadata --json`, and `lock_flake_quiet()`, which runs
  `nix flake lock`.
- `colmena.jobinfo` – `JobState`, `JobType`, `JobStats` and the functions
  that describe jobs in words: `describe_node_list()`,
  `describe_state_transition()`, `failure_summary()` and `job_label()`.
- `colmena.job` – a `JobMonitor` that tracks jobs through an `asyncio.Queue`,
  `JobHandle` and `MetaJobHandle` through which jobs report, and the
  `ProgressMessage`/`Line` values passed to an optional progress callback.
  `create_monitor()` returns a monitor with its meta job handle;
  `null_job_handle()` returns a handle connected to no monitor.
- `colmena.evaluator` – `NixEvalJobs`, which runs `nix-eval-jobs` and yields
  `AttributeOutput`, `AttributeFailure` or `GlobalFailure` items as they
  arrive, and `parse_eval_line()` for a single output line.
- `colmena.errors` – `ColmenaError` and its subclasses, plus
  `from_returncode()` and `unknown()`.

## Installation

```
pip install .
```

The package has no third-party dependencies. `nix` must be on `PATH` for
flake resolution, and `nix-eval-jobs` for `NixEvalJobs` (or set the
`NIX_EVAL_JOBS` environment variable to its path).

## Example

```python
import asyncio

from colmena.expression import SerializedNixExpression
from colmena.goal import Goal
from colmena.job import create_monitor
from colmena.jobinfo import JobType
from colmena.limits import EvaluationNodeLimit

goal = Goal.parse("dry-activate")
print(goal.requires_activation())        # True

limit = EvaluationNodeLimit.parse("auto")
print(limit.get_limit())                 # based on available memory

print(SerializedNixExpression(["a", "b"]).expression())
# (builtins.fromJSON "[\"a\",\"b\"]")


async def main():
    monitor, meta = create_monitor(None)

    async def work(job):
        eval_job = job.create_job(JobType.EVALUATE, ["alpha"])

        async def evaluate(j):
            j.stdout("evaluating alpha")

        await eval_job.run(evaluate)

    await asyncio.gather(meta.run(work), monitor.run_until_completion())


asyncio.run(main())
```

## What the package does not do

This is a library of parts, not a deployment tool. It has no command-line
program, does not read hive or flake deployment configurations, does not
connect to hosts, copy closures, upload keys, activate profiles or reboot
machines, and has no progress display of its own: the job monitor only hands
`ProgressMessage` values to a callback you supply.

## Tests

```
pip install .[test]
pytest
```