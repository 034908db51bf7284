"""Ralph loop options — one schema for setup parsing and prompt normalization.

The loop options accepted by ``ralph setup`` can also appear inside the prompt
text the agent runtime hands to the stop hook (the runtime echoes the whole
``/ralph:loop ...`` invocation as the first turn's prompt).  Both sides are
derived from ``LOOP_OPTIONS`` so the setup parser and the identity check in the
controller cannot drift apart.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Callable

from ralphloop.constants import (
    DEFAULT_COMPLETION_PROMISE,
    DEFAULT_MAX_ITERATIONS,
    HELP_COMMAND,
    LOOP_INVOCATION_PREFIX,
)
from ralphloop.models import LoopArgs, UsageError


def _parse_max_iterations(value: str | None) -> int:
    text = value or ""
    if not re.fullmatch(r"\d+", text) or int(text) <= 0:
        raise UsageError(f"Invalid iteration limit: '{text}'")
    return int(text)


def _parse_completion_promise(value: str | None) -> str:
    if not value:
        raise UsageError("Missing promise text.")
    return value


@dataclass(frozen=True)
class LoopOption:
    flag: str
    dest: str
    parse: Callable[[str | None], Any]
    help: str


LOOP_OPTIONS: tuple[LoopOption, ...] = (
    LoopOption(
        flag="--max-iterations",
        dest="max_iterations",
        parse=_parse_max_iterations,
        help="Hard cap on loop iterations (positive integer).",
    ),
    LoopOption(
        flag="--completion-promise",
        dest="completion_promise",
        parse=_parse_completion_promise,
        help="Sentinel the agent outputs as <promise>TEXT</promise> to finish early.",
    ),
)
LOOP_OPTION_FLAGS = {option.flag: option for option in LOOP_OPTIONS}

_INVOCATION_TOKEN_PATTERN = re.compile(r'(?:[^\s"]+|"[^"]*")+')
_INVOCATION_PREFIX_PATTERN = re.compile(rf"^\s*{re.escape(LOOP_INVOCATION_PREFIX)}(?:\s+|$)")
_OPTION_FRAGMENT_PATTERNS = tuple(
    re.compile(rf'(?:^|(?<=\s)){re.escape(option.flag)}\s+(?:"[^"]*"|\S+)\s*') for option in LOOP_OPTIONS
)
_QUOTED_PROMPT_PATTERN = re.compile(r'^"([^"]*)"$')


# ---------------------------------------------------------------------------
# Tokenizing
# ---------------------------------------------------------------------------


def _strip_wrapping_quotes(token: str) -> str:
    return re.sub(r'^"|"$', "", token)


def split_invocation_string(text: str) -> list[str]:
    """Split on whitespace, keeping double-quoted spans together and unquoting them."""
    return [_strip_wrapping_quotes(token) for token in _INVOCATION_TOKEN_PATTERN.findall(text)]


def _looks_like_combined_invocation(args: list[str]) -> bool:
    # Some invokers hand the whole argument list over as one quoted string.
    if len(args) != 1:
        return False
    single = args[0]
    return single.startswith("-") or " --" in single


def strip_invocation_prefix(text: str) -> str:
    return _INVOCATION_PREFIX_PATTERN.sub("", text, count=1)


# ---------------------------------------------------------------------------
# Setup argument parsing
# ---------------------------------------------------------------------------


def parse_loop_args(
    argv: list[str],
    *,
    default_max_iterations: int = DEFAULT_MAX_ITERATIONS,
    default_completion_promise: str = DEFAULT_COMPLETION_PROMISE,
) -> LoopArgs:
    args = list(argv)
    if _looks_like_combined_invocation(args):
        args = split_invocation_string(args[0])

    values: dict[str, Any] = {
        "max_iterations": default_max_iterations,
        "completion_promise": default_completion_promise,
    }
    prompt_args: list[str] = []
    index = 0
    while index < len(args):
        token = args[index]
        option = LOOP_OPTION_FLAGS.get(token)
        if option is None:
            prompt_args.append(token)
            index += 1
            continue
        value = args[index + 1] if index + 1 < len(args) else None
        if value in LOOP_OPTION_FLAGS:
            value = None
            index += 1
        else:
            index += 2
        values[option.dest] = option.parse(value)

    prompt = strip_invocation_prefix(" ".join(prompt_args)).strip()
    if not prompt:
        raise UsageError(f"No task specified. Run {HELP_COMMAND} for usage.")
    return LoopArgs(
        prompt=prompt,
        max_iterations=int(values["max_iterations"]),
        completion_promise=str(values["completion_promise"]),
    )


# ---------------------------------------------------------------------------
# Prompt normalization
# ---------------------------------------------------------------------------


def normalize_turn_prompt(prompt: str) -> str:
    """Reduce an incoming turn prompt to the bare task text.

    Strips a leading ``/ralph:loop`` invocation prefix and every known loop
    option together with its value, then trims surrounding whitespace. A task
    left wrapped in one pair of double quotes is unquoted, the same way
    ``parse_loop_args`` records it.
    """
    cleaned = strip_invocation_prefix(prompt or "")
    for pattern in _OPTION_FRAGMENT_PATTERNS:
        cleaned = pattern.sub("", cleaned)
    cleaned = cleaned.strip()
    quoted = _QUOTED_PROMPT_PATTERN.match(cleaned)
    if quoted:
        cleaned = quoted.group(1).strip()
    return cleaned


def normalize_original_prompt(prompt: str) -> str:
    return (prompt or "").strip()
