"""Ralph loop data models — exceptions, dataclasses, and coercion helpers."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

from ralphloop.constants import DECISION_ALLOW, DECISION_DENY


def _coerce_bool(value: Any, *, default: bool = False) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in {"true", "1", "yes", "on"}
    return bool(value) if value is not None else default


def _coerce_positive_int(value: Any, *, default: int) -> int:
    if isinstance(value, bool):
        return default
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        return default
    return parsed if parsed > 0 else default


def _coerce_non_negative_int(value: Any, *, default: int) -> int:
    if isinstance(value, bool):
        return default
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        return default
    return parsed if parsed >= 0 else default


class StateError(RuntimeError):
    """Raised when the loop state record cannot be loaded or persisted."""


class UsageError(ValueError):
    """Raised when loop setup arguments are invalid."""


@dataclass(frozen=True)
class TurnPayload:
    prompt: str = ""
    prompt_response: str = ""


@dataclass(frozen=True)
class LoopArgs:
    prompt: str
    max_iterations: int
    completion_promise: str


@dataclass(frozen=True)
class LoopConfig:
    default_max_iterations: int
    default_completion_promise: str
    log_enabled: bool
    log_path: Path
    persona: bool


@dataclass(frozen=True)
class Verdict:
    """Structured decision for one agent turn.

    ``continue_loop`` is only set on terminal allows, ``retry_instruction``
    and ``context_reset_requested`` only on denies.
    """
    decision: str
    outcome: str
    continue_loop: bool | None = None
    retry_instruction: str | None = None
    context_reset_requested: bool | None = None
    status_message: str = ""
    termination_reason: str = ""
    persona_message: str = ""

    @classmethod
    def allow(cls, outcome: str, *, status_message: str = "") -> "Verdict":
        return cls(decision=DECISION_ALLOW, outcome=outcome, status_message=status_message)

    @classmethod
    def stop(cls, outcome: str, *, reason: str, persona_message: str = "") -> "Verdict":
        return cls(
            decision=DECISION_ALLOW,
            outcome=outcome,
            continue_loop=False,
            status_message=reason,
            termination_reason=reason,
            persona_message=persona_message,
        )

    @classmethod
    def retry(
        cls,
        outcome: str,
        *,
        instruction: str,
        status_message: str,
        persona_message: str = "",
    ) -> "Verdict":
        return cls(
            decision=DECISION_DENY,
            outcome=outcome,
            retry_instruction=instruction,
            context_reset_requested=True,
            status_message=status_message,
            persona_message=persona_message,
        )

    @property
    def is_terminal(self) -> bool:
        return self.decision == DECISION_ALLOW and self.continue_loop is False

    def to_payload(self) -> dict[str, Any]:
        """Render the verdict in the agent runtime's hook output shape."""
        payload: dict[str, Any] = {"decision": self.decision}
        if self.decision == DECISION_DENY:
            payload["reason"] = self.retry_instruction or ""
        if self.continue_loop is not None:
            payload["continue"] = self.continue_loop
        if self.termination_reason:
            payload["stopReason"] = self.termination_reason
        if self.status_message:
            payload["systemMessage"] = self.status_message
        if self.context_reset_requested is not None:
            payload["clearContext"] = self.context_reset_requested
        return payload
