"""agentrelay run — run one agent turn (and its automatic continuations)."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import mimetypes
import signal
import uuid
from pathlib import Path

import click

from agentrelay.agent.content import Attachment
from agentrelay.agent.registry import ActiveRunnerRegistry
from agentrelay.config.models import RelayConfig
from agentrelay.config.parser import ConfigError, load_config
from agentrelay.console import ConsoleSink
from agentrelay.session.index import InMemorySessionIndex
from agentrelay.turn.orchestrator import TurnError, TurnRequest
from agentrelay.turn.ports import TurnStatus
from agentrelay.turn.scheduler import TurnScheduler

logger = logging.getLogger(__name__)

_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


@click.command()
@click.argument("prompt", required=False, default="")
@click.option(
    "-d",
    "--dir",
    "directory",
    type=click.Path(exists=True, file_okay=False),
    default=".",
    show_default=True,
    help="Working directory of the agent.",
)
@click.option("--resume", "session_id", default=None, help="Agent session id to resume.")
@click.option(
    "--conversation",
    "conversation_id",
    default=None,
    help="Conversation id (defaults to a fresh one).",
)
@click.option("--autopilot", is_flag=True, help="Answer agent questions automatically.")
@click.option(
    "-a",
    "--attach",
    "attach_files",
    multiple=True,
    type=click.Path(exists=True, dir_okay=False),
    help="File to send with the prompt (repeatable).",
)
@click.option("-f", "--config", "config_file", type=click.Path(), help="Config file path.")
@click.option(
    "--log-level",
    type=click.Choice(_LOG_LEVELS, case_sensitive=False),
    default="WARNING",
    show_default=True,
)
@click.option("--log-file", type=click.Path(dir_okay=False), default=None)
def run(
    prompt: str,
    directory: str,
    session_id: str | None,
    conversation_id: str | None,
    autopilot: bool,
    attach_files: tuple[str, ...],
    config_file: str | None,
    log_level: str,
    log_file: str | None,
) -> None:
    """Send PROMPT to the agent and relay its output until the turn ends."""
    _configure_logging(log_level, log_file)

    try:
        config = load_config(Path(config_file) if config_file else None)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc

    attachments = tuple(read_attachment(Path(p)) for p in attach_files)
    if not prompt.strip() and not attachments:
        raise click.UsageError("A PROMPT or at least one --attach file is required.")

    try:
        request = TurnRequest(
            conversation_id=conversation_id or f"cli-{uuid.uuid4().hex[:8]}",
            directory=str(Path(directory).resolve()),
            prompt=prompt,
            session_id=session_id,
            autopilot=autopilot,
            attachments=attachments,
        )
    except TurnError as exc:
        raise click.ClickException(str(exc)) from exc

    sink = asyncio.run(_run_turns(config, request))
    if sink.last_status is TurnStatus.ERROR:
        raise SystemExit(1)


def read_attachment(path: Path) -> Attachment:
    """Load *path* as an attachment, guessing its MIME type from the name."""
    mimetype, _ = mimetypes.guess_type(path.name)
    return Attachment(
        name=path.name,
        mimetype=mimetype or "application/octet-stream",
        data=path.read_bytes(),
    )


def _configure_logging(level: str, log_file: str | None) -> None:
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format=_LOG_FORMAT,
        handlers=handlers,
        force=True,
    )


async def _run_turns(config: RelayConfig, request: TurnRequest) -> ConsoleSink:
    """Wire up the collaborators and run the turn chain to its end."""
    sink = ConsoleSink()
    sessions = InMemorySessionIndex()
    registry = ActiveRunnerRegistry(config.inactivity_timeout_seconds)
    scheduler = TurnScheduler(registry, sink, sessions, config)

    loop = asyncio.get_running_loop()
    shutdown_tasks: set[asyncio.Task[int]] = set()

    def _signal_shutdown(sig_name: str) -> None:
        click.echo(f"\nReceived {sig_name}, stopping the agent...", err=True)
        task = loop.create_task(scheduler.shutdown())
        shutdown_tasks.add(task)
        task.add_done_callback(shutdown_tasks.discard)

    installed: list[signal.Signals] = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        # Not available on Windows event loops.
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, _signal_shutdown, sig.name)
            installed.append(sig)

    try:
        chain = scheduler.submit(request)
        (outcome,) = await asyncio.gather(chain, return_exceptions=True)
        if isinstance(outcome, BaseException):
            logger.error("Turn failed: %s", outcome)
            await sink.update_status(
                request.conversation_id, TurnStatus.ERROR, f"Failed: {outcome}"
            )
        await scheduler.wait_idle()
        if shutdown_tasks:
            await asyncio.gather(*shutdown_tasks, return_exceptions=True)
    finally:
        for sig in installed:
            loop.remove_signal_handler(sig)

    if sink.last_status is TurnStatus.AWAITING_ANSWER:
        record = sessions.lookup_by_conversation_id(request.conversation_id)
        resume_id = record.session_id if record is not None else request.session_id
        if resume_id:
            click.echo(
                f"\nAnswer with: agentrelay run --resume {resume_id} "
                f"--conversation {request.conversation_id} \"<answer>\"",
                err=True,
            )
    return sink
