"""Building blocks for NixOS deployments: goals, limits, options, jobs, flakes and evaluation."""

__version__ = "0.5.0"
__all__ = [
    "errors",
    "evaluator",
    "expression",
    "flake",
    "goal",
    "job",
    "jobinfo",
    "limits",
    "options",
]