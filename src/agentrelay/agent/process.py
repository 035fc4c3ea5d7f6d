"""Agent process driver — spawns the agent CLI and streams typed events."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import shutil
import subprocess
import sys
from collections.abc import AsyncIterator, Sequence

from agentrelay.agent.content import Attachment, build_stream_json_message
from agentrelay.agent.decoder import JsonLineDecoder
from agentrelay.agent.events import (
    AskUserEvent,
    ErrorEvent,
    ExitEvent,
    ExitPlanModeEvent,
    InitEvent,
    ResultEvent,
    StreamEvent,
    TextEvent,
    ToolUseEvent,
    parse_questions,
)
from agentrelay.constants import ASK_USER_TOOL, EXIT_PLAN_MODE_TOOL

logger = logging.getLogger(__name__)

#: Bytes requested per stdout/stderr read.
_READ_CHUNK = 65_536

#: Seconds to wait for ``taskkill`` on Windows.
_TASKKILL_TIMEOUT = 10.0

#: Seconds the pipes may stay open after the agent exits before reads stop.
_PIPE_DRAIN_GRACE = 1.0

#: Interval for checking the return code while the pipes are still held.
_EXIT_POLL_INTERVAL = 0.1

#: Flags shared by both invocation modes.
_OUTPUT_ARGS = (
    "--output-format",
    "stream-json",
    "--verbose",
    "--dangerously-skip-permissions",
)


class AgentProcess:
    """One agent CLI subprocess and the typed event stream it produces.

    Two invocation modes:

    * **Prompt mode**: the prompt is passed with ``-p`` and stdin is not
      connected.
    * **Attachment mode** (attachments present): ``--input-format
      stream-json`` is used and a single ``user`` message carrying text and
      attachment blocks is written to stdin, which is then closed.

    A prior agent session id resumes the agent's own context via
    ``--resume``.

    Events are consumed through :meth:`events`; the stream always ends
    with exactly one :class:`ExitEvent`.
    """

    def __init__(
        self,
        directory: str,
        prompt: str,
        session_id: str | None = None,
        attachments: Sequence[Attachment] = (),
        binary: str = "claude",
    ) -> None:
        self._directory = directory
        self._prompt = prompt
        self._resume_id = session_id
        self._attachments = tuple(attachments)
        self._binary = binary

        self._session_id: str | None = session_id
        self._process: asyncio.subprocess.Process | None = None
        self._pump_task: asyncio.Task[None] | None = None
        self._queue: asyncio.Queue[StreamEvent] = asyncio.Queue()
        self._decoder = JsonLineDecoder()
        self._stderr_chunks: list[str] = []
        self._started = False
        self._killed = False
        self._exited = False

        # De-duplication state, scoped to this process lifetime.
        self._seen_tool_use_ids: set[str] = set()
        self._init_emitted = False
        self._result_emitted = False

    # ------------------------------------------------------------------ #
    # Accessors
    # ------------------------------------------------------------------ #

    @property
    def current_session_id(self) -> str | None:
        """Agent session id: the resumed one, then whatever init reported."""
        return self._session_id

    @property
    def stderr_output(self) -> str:
        """Everything the agent wrote to stderr so far, stripped."""
        return "".join(self._stderr_chunks).strip()

    @property
    def pid(self) -> int | None:
        if self._process is None:
            return None
        return self._process.pid

    @property
    def uses_stdin(self) -> bool:
        return bool(self._attachments)

    def build_args(self) -> list[str]:
        """Command-line arguments (without the binary) for this invocation."""
        if self.uses_stdin:
            args = ["--input-format", "stream-json", *_OUTPUT_ARGS]
        else:
            args = ["-p", self._prompt, *_OUTPUT_ARGS]
        if self._resume_id:
            args = ["--resume", self._resume_id, *args]
        return args

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    async def start(self) -> None:
        """Spawn the subprocess and begin streaming its output.

        Spawn failures do not raise: they are reported as an
        :class:`ErrorEvent` followed by ``ExitEvent(code=None)``.
        """
        if self._started:
            return
        self._started = True

        if self._killed:
            logger.info("Agent process killed before start, not spawning")
            self._emit(ExitEvent(code=None))
            return

        logger.info(
            "Running agent in %s (session=%s, attachments=%d)",
            self._directory,
            self._resume_id or "new",
            len(self._attachments),
        )

        try:
            proc = await asyncio.create_subprocess_exec(
                self._resolve_binary(),
                *self.build_args(),
                cwd=self._directory,
                stdin=asyncio.subprocess.PIPE if self.uses_stdin else asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as exc:
            logger.error("Agent binary '%s' not found: %s", self._binary, exc)
            self._emit(ErrorEvent(kind="not_found", message=str(exc) or self._binary))
            self._emit(ExitEvent(code=None))
            return
        except OSError as exc:
            logger.error("Failed to spawn agent '%s': %s", self._binary, exc)
            self._emit(ErrorEvent(kind="spawn", message=str(exc)))
            self._emit(ExitEvent(code=None))
            return

        self._process = proc
        self._pump_task = asyncio.create_task(self._pump(proc))

        if self._killed:
            # kill() arrived while the spawn was in flight.
            self._process = None
            _terminate(proc)
            return

        if self.uses_stdin:
            await self._write_stdin(proc)

    def kill(self) -> None:
        """Terminate the subprocess. Safe to call at any time; never raises."""
        proc, self._process = self._process, None
        if proc is None:
            self._killed = True
            return
        if proc.returncode is not None:
            return
        self._killed = True
        logger.debug("Killing agent process pid=%s", proc.pid)
        _terminate(proc)

    async def events(self) -> AsyncIterator[StreamEvent]:
        """Yield events in arrival order, finishing after the exit event."""
        while True:
            event = await self._queue.get()
            yield event
            if isinstance(event, ExitEvent):
                return

    # ------------------------------------------------------------------ #
    # Internal
    # ------------------------------------------------------------------ #

    def _resolve_binary(self) -> str:
        if sys.platform == "win32":
            # .cmd/.bat shims are only found through PATHEXT lookup.
            return shutil.which(self._binary) or self._binary
        return self._binary

    def _emit(self, event: StreamEvent) -> None:
        if self._exited:
            logger.debug("Dropping %s event after exit", event.type)
            return
        if isinstance(event, ExitEvent):
            self._exited = True
        self._queue.put_nowait(event)

    async def _write_stdin(self, proc: asyncio.subprocess.Process) -> None:
        if proc.stdin is None:
            return
        message = build_stream_json_message(self._prompt, self._attachments)
        logger.info(
            "Writing stream-json message to stdin (%d chars, files=%s)",
            len(message),
            [a.name for a in self._attachments],
        )
        try:
            proc.stdin.write(message.encode("utf-8") + b"\n")
            await proc.stdin.drain()
        except (BrokenPipeError, ConnectionResetError, OSError) as exc:
            logger.error("Failed to write agent stdin: %s", exc)
            self._emit(ErrorEvent(kind="runtime", message=f"Failed to write to agent stdin: {exc}"))
        finally:
            with contextlib.suppress(OSError):
                proc.stdin.close()

    async def _pump(self, proc: asyncio.subprocess.Process) -> None:
        """Stream output until the process exits, then emit the exit event.

        Exit is detected from the process itself, not from pipe EOF:
        anything the agent spawned inherits its stdout/stderr and can hold
        them open long after the agent is gone.
        """
        readers = {
            asyncio.create_task(self._read_stdout(proc)),
            asyncio.create_task(self._read_stderr(proc)),
        }
        try:
            returncode = await _wait_for_exit(proc)
            _, still_open = await asyncio.wait(readers, timeout=_PIPE_DRAIN_GRACE)
            if still_open:
                logger.warning(
                    "Agent pid=%s exited but its output is still open, closing readers",
                    proc.pid,
                )
                for task in still_open:
                    task.cancel()
                await asyncio.gather(*still_open, return_exceptions=True)
        except asyncio.CancelledError:
            for task in readers:
                task.cancel()
            raise

        for record in self._decoder.flush():
            self._dispatch_record(record)

        # Signal deaths (returncode < 0) and our own kills carry no exit code.
        code = None if self._killed or returncode < 0 else returncode
        logger.info("Agent process exited (returncode=%s)", returncode)
        if self._process is proc:
            self._process = None
        self._emit(ExitEvent(code=code))

    async def _read_stdout(self, proc: asyncio.subprocess.Process) -> None:
        if proc.stdout is None:
            return
        try:
            while True:
                chunk = await proc.stdout.read(_READ_CHUNK)
                if not chunk:
                    return
                for record in self._decoder.feed(chunk):
                    self._dispatch_record(record)
        except Exception as exc:
            logger.error("Error reading agent stdout: %s", exc)
            self._emit(ErrorEvent(kind="runtime", message=f"Failed to read agent output: {exc}"))

    async def _read_stderr(self, proc: asyncio.subprocess.Process) -> None:
        if proc.stderr is None:
            return
        try:
            while True:
                chunk = await proc.stderr.read(_READ_CHUNK)
                if not chunk:
                    return
                text = chunk.decode("utf-8", errors="replace")
                logger.debug("Agent stderr: %s", text)
                self._stderr_chunks.append(text)
        except Exception as exc:
            logger.warning("Error reading agent stderr: %s", exc)

    def _dispatch_record(self, record: dict[str, object]) -> None:
        """Translate one decoded stdout record into stream events.

        The agent's ``--output-format stream-json --verbose`` output uses
        these top-level record types:

        * ``system``    — ``subtype: init`` carries ``session_id`` and ``model``.
        * ``assistant`` — ``message.content[]`` holds ``text`` and
          ``tool_use`` blocks.
        * ``result``    — final aggregated result with cost.

        ``user`` echoes and unknown types are ignored.
        """
        record_type = record.get("type")

        if record_type == "system":
            if record.get("subtype") != "init":
                return
            if self._init_emitted:
                logger.debug("Skipping duplicate init record")
                return
            session_id = record.get("session_id")
            if not isinstance(session_id, str) or not session_id:
                logger.warning("Init record without session_id ignored")
                return
            self._init_emitted = True
            self._session_id = session_id
            model = record.get("model")
            self._emit(
                InitEvent(
                    session_id=session_id,
                    model=model if isinstance(model, str) else None,
                )
            )

        elif record_type == "assistant":
            message = record.get("message")
            if not isinstance(message, dict):
                return
            blocks = message.get("content")
            if not isinstance(blocks, list):
                return
            for block in blocks:
                if isinstance(block, dict):
                    self._dispatch_content_block(block)

        elif record_type == "result":
            if self._result_emitted:
                logger.debug("Skipping duplicate result record")
                return
            self._result_emitted = True
            result = record.get("result")
            cost = record.get("total_cost_usd")
            self._emit(
                ResultEvent(
                    result_text=result if isinstance(result, str) else None,
                    cost_usd=float(cost) if isinstance(cost, int | float) else None,
                )
            )

    def _dispatch_content_block(self, block: dict[str, object]) -> None:
        block_type = block.get("type")

        if block_type == "text":
            text = block.get("text")
            if isinstance(text, str) and text:
                self._emit(TextEvent(text=text))

        elif block_type == "tool_use":
            tool_name = block.get("name")
            if not isinstance(tool_name, str) or not tool_name:
                return

            # Without an id there is nothing to de-duplicate on.
            tool_use_id = block.get("id")
            if not isinstance(tool_use_id, str) or not tool_use_id:
                tool_use_id = None
            if tool_use_id is not None:
                if tool_use_id in self._seen_tool_use_ids:
                    logger.info("Skipping duplicate tool_use %s (%s)", tool_use_id, tool_name)
                    return
                self._seen_tool_use_ids.add(tool_use_id)

            tool_input = block.get("input")
            if not isinstance(tool_input, dict):
                tool_input = {}

            self._emit(
                ToolUseEvent(tool_name=tool_name, input=tool_input, tool_use_id=tool_use_id)
            )
            if tool_name == ASK_USER_TOOL:
                self._emit(AskUserEvent(questions=parse_questions(tool_input)))
            elif tool_name == EXIT_PLAN_MODE_TOOL:
                self._emit(ExitPlanModeEvent())


def _terminate(proc: asyncio.subprocess.Process) -> None:
    """POSIX: SIGTERM. Windows: kill the whole process tree."""
    if sys.platform == "win32":
        try:
            subprocess.run(
                ["taskkill", "/pid", str(proc.pid), "/T", "/F"],
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                check=True,
                timeout=_TASKKILL_TIMEOUT,
            )
            return
        except (OSError, subprocess.SubprocessError) as exc:
            logger.warning("taskkill failed for pid %s (%s), falling back to kill()", proc.pid, exc)
        with contextlib.suppress(ProcessLookupError, OSError):
            proc.kill()
        return

    with contextlib.suppress(ProcessLookupError):
        proc.terminate()


async def _wait_for_exit(proc: asyncio.subprocess.Process) -> int:
    """Return the exit code as soon as the process is reaped.

    ``Process.wait()`` can also wait for the pipe transports to close, which
    never happens while a descendant still holds them, so ``returncode`` is
    checked as well.
    """
    waiter = asyncio.ensure_future(proc.wait())
    try:
        while proc.returncode is None:
            done, _ = await asyncio.wait({waiter}, timeout=_EXIT_POLL_INTERVAL)
            if done:
                return waiter.result()
        return proc.returncode
    finally:
        waiter.cancel()
