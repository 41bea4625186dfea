"""Nix expressions and serialization of data into them."""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from typing import Any, Union

__all__ = ["NixExpression", "SerializedNixExpression", "nix_quote", "expression_text"]


class NixExpression(ABC):
    """A Nix expression that can be handed to an evaluator."""

    @abstractmethod
    def expression(self) -> str:
        """Return the full Nix expression to be evaluated."""

    def requires_flakes(self) -> bool:
        """Return whether evaluating this expression needs flakes."""
        return False


class SerializedNixExpression(NixExpression):
    """Arbitrary JSON-serializable data embedded as a Nix expression."""

    def __init__(self, data: Any) -> None:
        encoded = json.dumps(data, separators=(",", ":"), ensure_ascii=False)
        self._quoted = nix_quote(encoded)

    def expression(self) -> str:
        return f"(builtins.fromJSON {self._quoted})"


def nix_quote(s: str) -> str:
    """Turn a string into a quoted Nix string literal."""
    inner = s.replace("\\", "\\\\").replace('"', '\\"').replace("${", "\\${")
    return f'"{inner}"'


def expression_text(expression: Union[str, NixExpression]) -> str:
    """Return the text of a plain string or a NixExpression."""
    if isinstance(expression, str):
        return expression
    return expression.expression()