from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

from ralphloop.config import _load_loop_config
from ralphloop.constants import (
    PERSONA_CANCELLED,
    PERSONA_NOTHING_TO_CANCEL,
    PERSONA_SETUP,
    PROMISE_TAG_TEMPLATE,
    STATE_FILE,
)
from ralphloop.controller import _parse_turn_payload, decide
from ralphloop.models import LoopArgs, LoopConfig, StateError, UsageError
from ralphloop.options import LOOP_OPTIONS, parse_loop_args
from ralphloop.state import (
    _default_state,
    _delete_state,
    _load_state,
    _resolve_repo_root,
    _store_state,
)
from ralphloop.utils import _append_log, _compact_log_text


def _persona(config: LoopConfig, message: str) -> None:
    if config.persona and message:
        print(f"Ralph: {message}", file=sys.stderr)


def _render_setup_banner(args: LoopArgs) -> str:
    lines = [
        "",
        "Ralph is helping! I'm going in a circle!",
        "",
        ">> Config:",
        f"   - Max Iterations: {args.max_iterations}",
        f"   - Completion Promise: {args.completion_promise}",
        f"   - Original Prompt: {args.prompt}",
        "",
        "I'm starting now! I hope I don't run out of paste!",
        "",
        "⚠️  WARNING: This loop will continue until the task is complete,",
        f"    the iteration limit ({args.max_iterations}) is reached, or a promise is fulfilled.",
    ]
    if args.completion_promise:
        lines.extend(
            [
                "",
                "⚠️  RALPH IS LISTENING FOR A PROMISE TO EXIT",
                f"   You must OUTPUT: {PROMISE_TAG_TEMPLATE.format(value=args.completion_promise)}",
            ]
        )
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def _cmd_setup(args: argparse.Namespace) -> int:
    state_path = Path(args.state_file).expanduser().resolve()
    repo_root = _resolve_repo_root(state_path)
    config = _load_loop_config(repo_root)

    try:
        loop_args = parse_loop_args(
            list(args.tokens),
            default_max_iterations=config.default_max_iterations,
            default_completion_promise=config.default_completion_promise,
        )
    except UsageError as exc:
        print(f"ralph setup: ERROR {exc}", file=sys.stderr)
        return 1

    try:
        state_path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        print(f"ralph setup: ERROR could not create state directory {state_path.parent}: {exc}", file=sys.stderr)
        return 1
    try:
        _store_state(state_path, _default_state(loop_args))
    except StateError as exc:
        print(f"ralph setup: ERROR failed to initialize state file: {exc}", file=sys.stderr)
        return 1

    _append_log(
        repo_root,
        (
            f"setup started loop max_iterations={loop_args.max_iterations} "
            f"promise={loop_args.completion_promise!r} prompt={_compact_log_text(loop_args.prompt)!r}"
        ),
        config=config,
    )
    print(_render_setup_banner(loop_args))
    print("")
    _persona(config, PERSONA_SETUP)
    return 0


def _cmd_cancel(args: argparse.Namespace) -> int:
    state_path = Path(args.state_file).expanduser().resolve()
    repo_root = _resolve_repo_root(state_path)
    config = _load_loop_config(repo_root)

    try:
        existed = _delete_state(state_path)
    except StateError as exc:
        print(f"ralph cancel: ERROR {exc}", file=sys.stderr)
        return 1

    if existed:
        _append_log(repo_root, "cancel removed active loop", config=config)
        _persona(config, PERSONA_CANCELLED)
    else:
        _persona(config, PERSONA_NOTHING_TO_CANCEL)
    print("ralph cancel")
    print(f"state_file: {state_path}")
    print(f"cancelled: {str(existed).lower()}")
    return 0


def _cmd_hook(args: argparse.Namespace) -> int:
    state_path = Path(args.state_file).expanduser().resolve()
    config = _load_loop_config(_resolve_repo_root(state_path))
    turn = _parse_turn_payload(sys.stdin.read())

    try:
        verdict = decide(turn, state_path=state_path, config=config)
    except StateError as exc:
        print(f"ralph hook: ERROR {exc}", file=sys.stderr)
        return 1

    _persona(config, verdict.persona_message)
    print(json.dumps(verdict.to_payload()))
    return 0


def _cmd_status(args: argparse.Namespace) -> int:
    state_path = Path(args.state_file).expanduser().resolve()
    if not state_path.exists():
        print("ralph status")
        print(f"state_file: {state_path}")
        print("active: false")
        return 0
    try:
        state = _load_state(state_path)
    except StateError as exc:
        print(f"ralph status: ERROR {exc}", file=sys.stderr)
        return 1

    print("ralph status")
    print(f"state_file: {state_path}")
    for key in (
        "active",
        "current_iteration",
        "max_iterations",
        "completion_promise",
        "original_prompt",
        "started_at",
    ):
        value = state.get(key, "<missing>")
        print(f"{key}: {value}")
    return 0


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="ralph loop command line interface")
    parser.add_argument(
        "--state-file",
        default=str(STATE_FILE),
        help=f"Path to the loop state JSON (default: {STATE_FILE})",
    )
    subparsers = parser.add_subparsers(dest="command")

    option_usage = " ".join(f"[{option.flag} VALUE]" for option in LOOP_OPTIONS)
    # '+' prefix: loop options are parsed by parse_loop_args and may sit anywhere in the prompt.
    setup = subparsers.add_parser(
        "setup",
        help="Start a loop for a prompt",
        prefix_chars="+",
        usage=f"ralph setup PROMPT... {option_usage}",
    )
    setup.add_argument(
        "tokens",
        nargs="*",
        help="Prompt text and loop options ("
        + "; ".join(f"{option.flag}: {option.help}" for option in LOOP_OPTIONS)
        + ")",
    )
    setup.set_defaults(handler=_cmd_setup)

    cancel = subparsers.add_parser("cancel", help="Stop the active loop, if any")
    cancel.set_defaults(handler=_cmd_cancel)

    hook = subparsers.add_parser(
        "hook",
        help="Decide one agent turn: read the turn JSON on stdin, write the verdict JSON",
    )
    hook.set_defaults(handler=_cmd_hook)

    status = subparsers.add_parser("status", help="Show the active loop state")
    status.set_defaults(handler=_cmd_status)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    handler = getattr(args, "handler", None)
    if handler is None:
        parser.print_help()
        return 2
    return int(handler(args))
