"""User-facing message text."""

from __future__ import annotations

AGENT_NOT_FOUND = (
    "The agent CLI is not installed or not on PATH. "
    "Install it (npm install -g @anthropic-ai/claude-code) and try again."
)
EMPTY_QUESTIONS = "The agent asked a question without any content. Ending this turn."
AUTOPILOT_RESUME_FAILED = "Could not continue the session automatically."
AUTOPILOT_NO_SESSION = "Could not continue: the agent did not report a session id."
PLAN_APPROVED_PROMPT = "The plan is approved. Proceed with the implementation."

STATUS_RECEIVED = "Received"
STATUS_WORKING = "Working..."
STATUS_AWAITING_ANSWER = "Waiting for your answer"
STATUS_PLAN_APPROVED = "Plan approved, starting implementation"

#: Progress label per agent tool name.
TOOL_LABELS = {
    "Read": "Reading files",
    "Write": "Writing files",
    "Edit": "Editing files",
    "MultiEdit": "Editing files",
    "Bash": "Running a command",
    "Glob": "Searching files",
    "Grep": "Searching code",
    "WebFetch": "Fetching a web page",
    "WebSearch": "Searching the web",
    "Task": "Running a sub-task",
    "TodoWrite": "Updating the task list",
    "NotebookEdit": "Editing a notebook",
}
DEFAULT_TOOL_LABEL = "Working"


def error_occurred(error: str) -> str:
    return f"An error occurred: {error}"


def exit_error(code: int | None) -> str:
    return f"The agent exited unexpectedly (code {code})."


def inactivity_timeout(minutes: int) -> str:
    return f"The agent was stopped after {minutes} minute(s) without activity."


def autopilot_answer(answer: str) -> str:
    return f"Autopilot answered: {answer}"


def tool_label(tool_name: str) -> str:
    return TOOL_LABELS.get(tool_name, DEFAULT_TOOL_LABEL)


def format_elapsed(seconds: float) -> str:
    """Format a duration as 'less than a second', '34s' or '1m 22s'."""
    total = int(seconds)
    if total < 1:
        return "less than a second"
    if total < 60:
        return f"{total}s"
    minutes, secs = divmod(total, 60)
    return f"{minutes}m {secs:02d}s"


def completed(elapsed: str) -> str:
    return f"Completed ({elapsed})"


def failed(error: str) -> str:
    return f"Failed: {error}"


def autopilot_continue(elapsed: str) -> str:
    return f"Autopilot answered, continuing ({elapsed})"


def tool_progress(label: str, elapsed: str) -> str:
    return f"{label} ({elapsed})"
