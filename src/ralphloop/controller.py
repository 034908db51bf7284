"""Ralph loop controller — the per-turn decision made by the stop hook.

Every hook invocation is a fresh process. The only continuity between turns
is the state record, so ``decide`` reads it, picks a verdict, and either
deletes the record (terminal verdicts, abandoned loops) or stores it with the
iteration counter bumped (continue). Never both.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from ralphloop.config import _load_loop_config
from ralphloop.constants import (
    CONTINUE_MESSAGE,
    MAX_ITERATIONS_MESSAGE,
    MISMATCH_MESSAGE,
    OUTCOME_CONTINUE,
    OUTCOME_INACTIVE,
    OUTCOME_MAX_ITERATIONS,
    OUTCOME_NO_LOOP,
    OUTCOME_PROMISE_FULFILLED,
    OUTCOME_PROMPT_MISMATCH,
    OUTCOME_STATE_UNREADABLE,
    PERSONA_CONTINUE,
    PERSONA_MAX_ITERATIONS,
    PERSONA_PROMISE,
    PROMISE_MESSAGE,
    PROMISE_TAG_TEMPLATE,
)
from ralphloop.models import LoopConfig, StateError, TurnPayload, Verdict
from ralphloop.options import normalize_original_prompt, normalize_turn_prompt
from ralphloop.state import (
    _delete_state,
    _load_state,
    _normalize_state,
    _resolve_repo_root,
    _store_state,
)
from ralphloop.utils import _append_log, _compact_log_text


# ---------------------------------------------------------------------------
# Turn payload
# ---------------------------------------------------------------------------


def _text_field(payload: dict[str, Any], key: str) -> str:
    value = payload.get(key)
    return value if isinstance(value, str) else ""


def _parse_turn_payload(raw: str) -> TurnPayload:
    try:
        parsed = json.loads(raw)
    except (TypeError, json.JSONDecodeError):
        return TurnPayload()
    if not isinstance(parsed, dict):
        return TurnPayload()
    return TurnPayload(
        prompt=_text_field(parsed, "prompt"),
        prompt_response=_text_field(parsed, "prompt_response"),
    )


# ---------------------------------------------------------------------------
# Decision
# ---------------------------------------------------------------------------


def _promise_fulfilled(completion_promise: str, response: str) -> bool:
    if not completion_promise:
        return False
    return PROMISE_TAG_TEMPLATE.format(value=completion_promise) in response


def decide(
    turn: TurnPayload,
    *,
    state_path: Path,
    config: LoopConfig | None = None,
) -> Verdict:
    if not state_path.exists():
        return Verdict.allow(OUTCOME_NO_LOOP)

    repo_root = _resolve_repo_root(state_path)
    if config is None:
        config = _load_loop_config(repo_root)

    try:
        raw_state = _load_state(state_path)
    except StateError as exc:
        # Fail open: an unreadable record must never block the turn.
        _append_log(
            repo_root,
            f"hook {OUTCOME_STATE_UNREADABLE}: allowing turn without a loop ({exc})",
            config=config,
        )
        return Verdict.allow(OUTCOME_STATE_UNREADABLE)

    state = _normalize_state(raw_state, default_max_iterations=config.default_max_iterations)
    original_prompt = state["original_prompt"]

    if turn.prompt != original_prompt:
        received = normalize_turn_prompt(turn.prompt)
        expected = normalize_original_prompt(original_prompt)
        # Retries are re-issued with an empty prompt; only a real, different prompt counts.
        if received and received != expected:
            _delete_state(state_path)
            _append_log(
                repo_root,
                (
                    f"hook {OUTCOME_PROMPT_MISMATCH}: removed abandoned loop "
                    f"expected={_compact_log_text(expected)!r} got={_compact_log_text(received)!r}"
                ),
                config=config,
            )
            return Verdict.allow(
                OUTCOME_PROMPT_MISMATCH,
                status_message=MISMATCH_MESSAGE.format(expected=expected, received=received),
            )

    if not state["active"]:
        _append_log(repo_root, f"hook {OUTCOME_INACTIVE}: record present but not active", config=config)
        return Verdict.allow(OUTCOME_INACTIVE)

    completion_promise = state["completion_promise"]
    current_iteration = state["current_iteration"]
    max_iterations = state["max_iterations"]

    if _promise_fulfilled(completion_promise, turn.prompt_response):
        _delete_state(state_path)
        _append_log(
            repo_root,
            f"hook {OUTCOME_PROMISE_FULFILLED}: promise={completion_promise!r} iteration={current_iteration}",
            config=config,
        )
        return Verdict.stop(
            OUTCOME_PROMISE_FULFILLED,
            reason=PROMISE_MESSAGE.format(promise=completion_promise),
            persona_message=PERSONA_PROMISE.format(promise=completion_promise),
        )

    if current_iteration >= max_iterations:
        _delete_state(state_path)
        _append_log(
            repo_root,
            f"hook {OUTCOME_MAX_ITERATIONS}: iteration={current_iteration} max={max_iterations}",
            config=config,
        )
        return Verdict.stop(
            OUTCOME_MAX_ITERATIONS,
            reason=MAX_ITERATIONS_MESSAGE.format(
                iteration=current_iteration, max_iterations=max_iterations
            ),
            persona_message=PERSONA_MAX_ITERATIONS.format(iteration=current_iteration),
        )

    next_iteration = current_iteration + 1
    updated = dict(raw_state)
    updated["current_iteration"] = next_iteration
    _store_state(state_path, updated)
    _append_log(
        repo_root,
        f"hook {OUTCOME_CONTINUE}: iteration {current_iteration} done, starting {next_iteration} of {max_iterations}",
        config=config,
    )
    return Verdict.retry(
        OUTCOME_CONTINUE,
        instruction=original_prompt,
        status_message=CONTINUE_MESSAGE.format(iteration=next_iteration),
        persona_message=PERSONA_CONTINUE.format(iteration=current_iteration),
    )
