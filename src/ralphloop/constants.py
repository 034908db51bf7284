"""Ralph loop constants — state paths, defaults, and status message templates."""

from __future__ import annotations

from pathlib import Path

STATE_ROOT_DIRNAME = ".gemini"
STATE_DIR = Path(STATE_ROOT_DIRNAME) / "ralph"
STATE_FILE = STATE_DIR / "state.json"
POLICY_FILE = Path(STATE_ROOT_DIRNAME) / "ralph_policy.yaml"
DEFAULT_LOG_PATH = Path(STATE_ROOT_DIRNAME) / "logs" / "ralph.log"

LOOP_INVOCATION_PREFIX = "/ralph:loop"
HELP_COMMAND = "/ralph:help"

DEFAULT_MAX_ITERATIONS = 5
DEFAULT_COMPLETION_PROMISE = ""

PROMISE_TAG_TEMPLATE = "<promise>{value}</promise>"

# ---------------------------------------------------------------------------
# Decision outcomes
# ---------------------------------------------------------------------------

OUTCOME_NO_LOOP = "no_loop"
OUTCOME_STATE_UNREADABLE = "state_unreadable"
OUTCOME_PROMPT_MISMATCH = "prompt_mismatch"
OUTCOME_INACTIVE = "inactive"
OUTCOME_PROMISE_FULFILLED = "promise_fulfilled"
OUTCOME_MAX_ITERATIONS = "max_iterations"
OUTCOME_CONTINUE = "continue"

DECISION_ALLOW = "allow"
DECISION_DENY = "deny"

# ---------------------------------------------------------------------------
# Human-readable messages
# ---------------------------------------------------------------------------

MISMATCH_MESSAGE = "🚨 Ralph detected a prompt mismatch.\nExpected: '{expected}'\nGot:      '{received}'"
PROMISE_MESSAGE = "✅ Ralph found the completion promise: {promise}"
MAX_ITERATIONS_MESSAGE = "✅ Ralph has reached the iteration limit ({iteration} of {max_iterations})."
CONTINUE_MESSAGE = "🔄 Ralph is starting iteration {iteration}..."

PERSONA_PROMISE = "I found a shiny penny! It says {promise}. The computer is sleeping now."
PERSONA_MAX_ITERATIONS = "I'm tired. I've gone around {iteration} times. The computer is sleeping now."
PERSONA_CONTINUE = "I'm doing a circle! Iteration {iteration} is done."
PERSONA_SETUP = "I'm helping! I'm setting up my toys."
PERSONA_CANCELLED = "I've stopped my loop and cleaned up my toys."
PERSONA_NOTHING_TO_CANCEL = "I wasn't doing anything anyway!"
