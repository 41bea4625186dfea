"""Deployment goals."""

from __future__ import annotations

from enum import Enum

__all__ = ["Goal"]

_PARSE_ERROR = "Not one of [build, push, switch, boot, test, dry-activate, keys]."


class Goal(Enum):
    """The goal of a deployment. The default goal is SWITCH."""

    BUILD = "build"
    PUSH = "push"
    SWITCH = "switch"
    BOOT = "boot"
    TEST = "test"
    DRY_ACTIVATE = "dry-activate"
    UPLOAD_KEYS = "keys"

    @classmethod
    def parse(cls, value: str) -> "Goal":
        """Parse a goal from its command-line spelling."""
        try:
            return cls(value)
        except ValueError:
            raise ValueError(_PARSE_ERROR) from None

    def __str__(self) -> str:
        return self.value

    def activation_verb(self) -> str | None:
        """Return the switch-to-configuration verb, or None for non-activating goals."""
        if self in (Goal.BUILD, Goal.PUSH):
            return None
        return self.value

    def success_str(self) -> str:
        return _SUCCESS_MESSAGES[self]

    def should_switch_profile(self) -> bool:
        return self in (Goal.BOOT, Goal.SWITCH)

    def requires_activation(self) -> bool:
        return self not in (Goal.BUILD, Goal.UPLOAD_KEYS, Goal.PUSH)

    def persists_after_reboot(self) -> bool:
        return self in (Goal.SWITCH, Goal.BOOT)

    def requires_target_host(self) -> bool:
        return self is not Goal.BUILD


_SUCCESS_MESSAGES = {
    Goal.BUILD: "Configuration built",
    Goal.PUSH: "Pushed",
    Goal.SWITCH: "Activation successful",
    Goal.BOOT: "Will be activated next boot",
    Goal.TEST: "Activation successful (test)",
    Goal.DRY_ACTIVATE: "Dry activation successful",
    Goal.UPLOAD_KEYS: "Uploaded keys",
}