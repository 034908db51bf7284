"""Ralph loop configuration — optional YAML policy with built-in defaults."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

from ralphloop.constants import (
    DEFAULT_COMPLETION_PROMISE,
    DEFAULT_LOG_PATH,
    DEFAULT_MAX_ITERATIONS,
    POLICY_FILE,
)
from ralphloop.models import LoopConfig, _coerce_bool, _coerce_positive_int


def _load_loop_policy(repo_root: Path) -> dict[str, Any]:
    policy_path = repo_root / POLICY_FILE
    if not policy_path.exists():
        return {}
    try:
        loaded = yaml.safe_load(policy_path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, yaml.YAMLError):
        return {}
    if not isinstance(loaded, dict):
        return {}
    return loaded


def _policy_section(policy: dict[str, Any], name: str) -> dict[str, Any]:
    section = policy.get(name)
    return section if isinstance(section, dict) else {}


def _load_loop_config(repo_root: Path) -> LoopConfig:
    policy = _load_loop_policy(repo_root)
    defaults = _policy_section(policy, "defaults")
    logging_cfg = _policy_section(policy, "logging")

    completion_promise = defaults.get("completion_promise", DEFAULT_COMPLETION_PROMISE)
    if not isinstance(completion_promise, str):
        completion_promise = DEFAULT_COMPLETION_PROMISE

    raw_log_path = str(logging_cfg.get("path", "") or "").strip()
    log_path = Path(raw_log_path) if raw_log_path else DEFAULT_LOG_PATH

    return LoopConfig(
        default_max_iterations=_coerce_positive_int(
            defaults.get("max_iterations"), default=DEFAULT_MAX_ITERATIONS
        ),
        default_completion_promise=completion_promise.strip(),
        log_enabled=_coerce_bool(logging_cfg.get("enabled"), default=True),
        log_path=log_path,
        persona=_coerce_bool(policy.get("persona"), default=True),
    )
