"""Ralph loop state — the persisted record's load, normalize, store, and delete lifecycle."""

from __future__ import annotations

from pathlib import Path
from typing import Any

from ralphloop.constants import (
    DEFAULT_MAX_ITERATIONS,
    STATE_DIR,
    STATE_FILE,
    STATE_ROOT_DIRNAME,
)
from ralphloop.models import (
    LoopArgs,
    StateError,
    _coerce_non_negative_int,
    _coerce_positive_int,
)
from ralphloop.utils import _read_json, _utc_now, _write_json


# ---------------------------------------------------------------------------
# Path resolution helpers
# ---------------------------------------------------------------------------


def _resolve_repo_root(state_path: Path) -> Path:
    if (
        state_path.name == STATE_FILE.name
        and state_path.parent.name == STATE_DIR.name
        and state_path.parent.parent.name == STATE_ROOT_DIRNAME
    ):
        return state_path.parent.parent.parent
    return Path.cwd()


def _default_state_path(repo_root: Path) -> Path:
    return repo_root / STATE_FILE


# ---------------------------------------------------------------------------
# State loading / normalisation
# ---------------------------------------------------------------------------


def _load_state(path: Path) -> dict[str, Any]:
    return _read_json(path)


def _normalize_state(
    state: dict[str, Any],
    *,
    default_max_iterations: int = DEFAULT_MAX_ITERATIONS,
) -> dict[str, Any]:
    """Return a copy of ``state`` with every record field coerced to its type.

    Unknown keys are carried through untouched so a store after a decision
    rewrites the whole document as it was found.
    """
    normalized = dict(state)
    normalized["active"] = state.get("active") is True

    original_prompt = state.get("original_prompt")
    normalized["original_prompt"] = "" if original_prompt is None else str(original_prompt)

    completion_promise = state.get("completion_promise")
    normalized["completion_promise"] = "" if completion_promise is None else str(completion_promise)

    normalized["current_iteration"] = _coerce_non_negative_int(
        state.get("current_iteration"), default=1
    )
    normalized["max_iterations"] = _coerce_positive_int(
        state.get("max_iterations"), default=default_max_iterations
    )
    normalized["started_at"] = str(state.get("started_at", "") or "")
    return normalized


def _default_state(args: LoopArgs) -> dict[str, Any]:
    return {
        "active": True,
        "current_iteration": 1,
        "max_iterations": args.max_iterations,
        "completion_promise": args.completion_promise,
        "original_prompt": args.prompt,
        "started_at": _utc_now(),
    }


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------


def _store_state(path: Path, state: dict[str, Any]) -> None:
    try:
        _write_json(path, state)
    except OSError as exc:
        raise StateError(f"failed to write state file {path}: {exc}") from exc


def _cleanup_state_dir(state_dir: Path) -> None:
    if not state_dir.is_dir():
        return
    try:
        state_dir.rmdir()
    except OSError:
        # Not empty: the directory may hold unrelated state.
        return


def _delete_state(path: Path) -> bool:
    """Remove the record and its directory when empty. Returns whether a record existed."""
    existed = path.exists()
    try:
        path.unlink(missing_ok=True)
    except OSError as exc:
        raise StateError(f"failed to remove state file {path}: {exc}") from exc
    _cleanup_state_dir(path.parent)
    return existed
