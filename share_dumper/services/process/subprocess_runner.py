"""
Subprocess Runner - spawns external tools and streams their output.

stdout and stderr are drained by two independent reader tasks so a chatty
stream can never block the process while we wait on the other one.
Lines are split on ``\\n``, ``\\r\\n`` and bare ``\\r`` because rsync rewrites
its progress line in place with carriage returns.
"""

import asyncio
import logging
import os
import re
import signal
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence

from share_dumper.core.exceptions import LaunchFailure

STDOUT = "stdout"
STDERR = "stderr"

_CHUNK_SIZE = 64 * 1024
_LINE_BREAK = re.compile(rb"\r\n|\r|\n")

LineCallback = Callable[[str, str], None]


@dataclass
class CommandResult:
    """Outcome of a bounded command."""

    exit_code: Optional[int]
    stdout: str
    stderr: str
    timed_out: bool = False

    @property
    def succeeded(self) -> bool:
        return not self.timed_out and self.exit_code == 0


class RunningProcess:
    """Handle for one spawned process."""

    def __init__(self, process: asyncio.subprocess.Process, command: str, grace_seconds: float):
        self._process = process
        self._command = command
        self._grace_seconds = grace_seconds
        self._stderr_lines: List[str] = []
        self._cancel_requested = False
        self._escalation_task: Optional[asyncio.Task] = None

    @property
    def pid(self) -> int:
        return self._process.pid

    @property
    def returncode(self) -> Optional[int]:
        return self._process.returncode

    @property
    def is_running(self) -> bool:
        return self._process.returncode is None

    @property
    def cancel_requested(self) -> bool:
        return self._cancel_requested

    @property
    def stderr_text(self) -> str:
        return "\n".join(self._stderr_lines)

    async def stream(self, on_line: LineCallback) -> int:
        """
        Deliver every complete line from both streams, then return the exit code.

        ``on_line(stream, line)`` is called in arrival order with ``stream``
        being ``"stdout"`` or ``"stderr"``.
        """
        await asyncio.gather(
            self._read_stream(self._process.stdout, STDOUT, on_line),
            self._read_stream(self._process.stderr, STDERR, on_line),
        )
        return await self._process.wait()

    async def _read_stream(
        self, stream: Optional[asyncio.StreamReader], name: str, on_line: LineCallback
    ) -> None:
        if stream is None:
            return

        buffer = b""
        while True:
            chunk = await stream.read(_CHUNK_SIZE)
            if not chunk:
                break
            buffer += chunk

            # A trailing \r may be the first half of \r\n
            hold_cr = buffer.endswith(b"\r")
            parts = _LINE_BREAK.split(buffer[:-1] if hold_cr else buffer)
            buffer = parts.pop() + (b"\r" if hold_cr else b"")

            for part in parts:
                self._emit(name, part, on_line)

        remainder = buffer.rstrip(b"\r")
        if remainder:
            self._emit(name, remainder, on_line)

    def _emit(self, name: str, raw: bytes, on_line: LineCallback) -> None:
        line = raw.decode("utf-8", errors="replace")
        if name == STDERR:
            self._stderr_lines.append(line)
        on_line(name, line)

    async def wait(self) -> int:
        return await self._process.wait()

    def cancel(self) -> None:
        """
        Interrupt the process and escalate in the background.

        SIGINT now, SIGTERM after one grace window, SIGKILL after a second.
        Returns immediately.
        """
        if self._cancel_requested:
            return
        self._cancel_requested = True

        if not self.is_running:
            return

        logging.info(f"Interrupting {self._command} (pid {self.pid})")
        self._send_signal(signal.SIGINT)
        self._escalation_task = asyncio.create_task(self._escalate())

    async def _escalate(self) -> None:
        for next_signal in (signal.SIGTERM, signal.SIGKILL):
            if await self._exited_within(self._grace_seconds):
                return
            logging.warning(
                f"{self._command} (pid {self.pid}) still running after "
                f"{self._grace_seconds}s - sending {next_signal.name}"
            )
            self._send_signal(next_signal)

    async def _exited_within(self, seconds: float) -> bool:
        try:
            await asyncio.wait_for(self._process.wait(), timeout=seconds)
            return True
        except asyncio.TimeoutError:
            return False

    def _send_signal(self, sig: signal.Signals) -> None:
        """Signal the whole process group so forked children go down too."""
        try:
            os.killpg(self._process.pid, sig)
        except ProcessLookupError:
            logging.debug(f"{self._command} already exited before {sig.name}")

    async def kill(self) -> None:
        """Force the process down and reap it."""
        if self.is_running:
            self._send_signal(signal.SIGKILL)
        await self._process.wait()

    async def wait_closed(self) -> None:
        """Wait for a pending signal escalation to finish."""
        if self._escalation_task is not None:
            await self._escalation_task


class SubprocessRunner:
    """Starts external commands as asyncio subprocesses."""

    def __init__(self, cancel_grace_seconds: float = 5.0):
        self.cancel_grace_seconds = cancel_grace_seconds

    async def start(
        self,
        command: str,
        args: Sequence[str],
        env: Optional[Dict[str, str]] = None,
        stdin_bytes: Optional[bytes] = None,
    ) -> RunningProcess:
        """
        Spawn ``command args...``.

        ``env`` is layered on top of the current environment.

        Raises:
            LaunchFailure: The binary is missing or not executable.
        """
        process_env = None
        if env is not None:
            process_env = dict(os.environ)
            process_env.update(env)

        try:
            process = await asyncio.create_subprocess_exec(
                command,
                *args,
                stdin=asyncio.subprocess.PIPE if stdin_bytes is not None else asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=process_env,
                start_new_session=True,
            )
        except OSError as e:
            logging.error(f"Could not launch {command}: {e}")
            raise LaunchFailure(command, str(e)) from e

        if stdin_bytes is not None and process.stdin is not None:
            try:
                process.stdin.write(stdin_bytes)
                await process.stdin.drain()
            except (BrokenPipeError, ConnectionResetError):
                logging.debug(f"{command} closed stdin before input was written")
            finally:
                process.stdin.close()

        logging.debug(f"Started {command} (pid {process.pid})")
        return RunningProcess(process, command, self.cancel_grace_seconds)

    async def run_bounded(
        self,
        command: str,
        args: Sequence[str],
        timeout: float,
        env: Optional[Dict[str, str]] = None,
        stdin_bytes: Optional[bytes] = None,
    ) -> CommandResult:
        """
        Run a short-lived command to completion or until ``timeout`` elapses.

        On timeout the process is killed and ``timed_out`` is set.

        Raises:
            LaunchFailure: The binary is missing or not executable.
        """
        running = await self.start(command, args, env=env, stdin_bytes=stdin_bytes)
        stdout_lines: List[str] = []
        stderr_lines: List[str] = []

        def _collect(stream: str, line: str) -> None:
            (stdout_lines if stream == STDOUT else stderr_lines).append(line)

        try:
            exit_code = await asyncio.wait_for(running.stream(_collect), timeout=timeout)
        except asyncio.TimeoutError:
            logging.warning(f"{command} timed out after {timeout}s - killing process")
            await running.kill()
            return CommandResult(
                exit_code=None,
                stdout="\n".join(stdout_lines),
                stderr="\n".join(stderr_lines),
                timed_out=True,
            )

        return CommandResult(
            exit_code=exit_code,
            stdout="\n".join(stdout_lines),
            stderr="\n".join(stderr_lines),
        )
