"""Supervision of one external tool invocation.

``ProcessSupervisor.run()`` launches a command in its own process group,
drains stdout and stderr concurrently so the child can never block on a
full pipe, enforces a wall-clock timeout and supports cancellation from
another task through a ``ProcessHandle``.

Security Note: uses asyncio.create_subprocess_exec() with an argv list.
Nothing is ever interpolated into a shell command line.

Example::

    supervisor = ProcessSupervisor(ProcessConfig(timeout_seconds=60))
    handle = supervisor.create_handle("job-7")
    result = await supervisor.run(["docker", "run", ...], handle=handle)

    # elsewhere, e.g. from a cancel request:
    await supervisor.cancel(handle)
"""

from __future__ import annotations

import asyncio
import os
import signal
import time
import uuid
from dataclasses import dataclass, field
from pathlib import Path

from genorun.core.config import ProcessConfig
from genorun.core.errors import LaunchError, ProcessTimeoutError
from genorun.core.logging import get_logger

_logger = get_logger("supervisor")

_READ_CHUNK_SIZE = 8192


@dataclass
class ProcessHandle:
    """Stable reference to one supervised execution.

    The handle exists before the process is launched and outlives it, so a
    cancel request can target it at any point without relying on the OS
    pid (which may be reused once the process has been reaped).
    """

    label: str
    handle_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    process: asyncio.subprocess.Process | None = field(default=None, repr=False)
    cancel_requested: bool = False
    finished: bool = False

    @property
    def pid(self) -> int | None:
        """OS pid of the running process, for diagnostics only."""
        return self.process.pid if self.process is not None else None


@dataclass
class ProcessResult:
    """Outcome of a supervised process that exited on its own or was cancelled."""

    returncode: int | None
    stdout: str
    stderr: str
    duration_seconds: float
    exit_signal: int | None = None
    cancelled: bool = False
    truncated: bool = False

    @property
    def succeeded(self) -> bool:
        return self.returncode == 0 and not self.cancelled


class _TailBuffer:
    """Keeps at most ``limit`` bytes, dropping the oldest output first."""

    def __init__(self, limit: int) -> None:
        self._limit = limit
        self._data = bytearray()
        self.truncated = False

    def append(self, chunk: bytes) -> None:
        self._data.extend(chunk)
        overflow = len(self._data) - self._limit
        if overflow > 0:
            del self._data[:overflow]
            self.truncated = True

    def text(self) -> str:
        return self._data.decode("utf-8", errors="replace")


class ProcessSupervisor:
    """Launches, times out and cancels external processes.

    Features:
    - Process group isolation (start_new_session=True), so grandchildren
      such as a container runtime client are signalled together
    - Concurrent stdout/stderr draining with a bounded tail per stream
    - Timeout that kills the group before ``ProcessTimeoutError`` is raised
    - Graceful-then-forced cancellation through a ``ProcessHandle``
    """

    def __init__(self, config: ProcessConfig | None = None) -> None:
        self._config = config or ProcessConfig()

    @property
    def config(self) -> ProcessConfig:
        return self._config

    def create_handle(self, label: str) -> ProcessHandle:
        return ProcessHandle(label=label)

    async def run(
        self,
        cmd: list[str],
        cwd: Path | str | None = None,
        timeout_seconds: float | None = None,
        handle: ProcessHandle | None = None,
    ) -> ProcessResult:
        """Run ``cmd`` to completion.

        Args:
            cmd: Command and arguments.
            cwd: Working directory for the process.
            timeout_seconds: Overrides the configured timeout.
            handle: Handle through which the run can be cancelled.

        Returns:
            ProcessResult. ``cancelled`` is set when the run was stopped
            through ``cancel()``.

        Raises:
            ProcessTimeoutError: The process exceeded its budget. It has
                already been killed.
            LaunchError: The executable could not be started.
        """
        if not cmd:
            raise LaunchError("Empty command")
        timeout = timeout_seconds if timeout_seconds is not None else self._config.timeout_seconds
        handle = handle or self.create_handle(cmd[0])
        start_time = time.monotonic()

        if handle.cancel_requested:
            _logger.info("process.cancelled_before_launch", handle=handle.label)
            handle.finished = True
            return ProcessResult(
                returncode=None, stdout="", stderr="",
                duration_seconds=0.0, cancelled=True,
            )

        _logger.info(
            "process.starting",
            handle=handle.label,
            command=cmd[0],
            args_count=len(cmd) - 1,
            cwd=str(cwd) if cwd else None,
            timeout_seconds=timeout,
        )

        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=cwd,
                start_new_session=True,
            )
        except (FileNotFoundError, PermissionError, NotADirectoryError) as exc:
            handle.finished = True
            _logger.error("process.launch_failed", command=cmd[0], error=str(exc))
            raise LaunchError(f"Cannot start '{cmd[0]}': {exc}") from exc

        handle.process = process
        _logger.debug("process.started", handle=handle.label, pid=process.pid)

        stdout_buf = _TailBuffer(self._config.max_output_bytes)
        stderr_buf = _TailBuffer(self._config.max_output_bytes)
        readers = asyncio.gather(
            self._read_stream(process.stdout, stdout_buf),
            self._read_stream(process.stderr, stderr_buf),
        )
        # A cancel that arrived while the process was being spawned saw no
        # process to signal; honour it now.
        late_cancel = (
            asyncio.create_task(self.cancel(handle), name=f"cancel-{handle.handle_id}")
            if handle.cancel_requested
            else None
        )

        try:
            try:
                await asyncio.wait_for(process.wait(), timeout=timeout)
            except TimeoutError:
                await self._kill_process_group(process)
                duration = time.monotonic() - start_time
                _logger.warning(
                    "process.timeout",
                    handle=handle.label,
                    pid=process.pid,
                    timeout_seconds=timeout,
                    duration_seconds=round(duration, 2),
                )
                raise ProcessTimeoutError(timeout, cmd[0]) from None
            await self._drain(readers, process)
        except BaseException:
            # Timeout, caller cancellation or an unexpected error: never
            # leave the process group or the reader tasks behind.
            if process.returncode is None:
                _logger.warning("process.killing_orphan", handle=handle.label, pid=process.pid)
                await self._kill_process_group(process)
            if not readers.done():
                readers.cancel()
                await asyncio.gather(readers, return_exceptions=True)
            raise
        finally:
            handle.finished = True
            if late_cancel is not None and not late_cancel.done():
                late_cancel.cancel()

        duration = time.monotonic() - start_time
        returncode = process.returncode
        exit_signal = None
        if returncode is not None and returncode < 0:
            exit_signal = -returncode
            returncode = None

        result = ProcessResult(
            returncode=returncode,
            stdout=stdout_buf.text(),
            stderr=stderr_buf.text(),
            duration_seconds=duration,
            exit_signal=exit_signal,
            cancelled=handle.cancel_requested,
            truncated=stdout_buf.truncated or stderr_buf.truncated,
        )
        _logger.info(
            "process.completed",
            handle=handle.label,
            returncode=returncode,
            exit_signal=exit_signal,
            cancelled=result.cancelled,
            duration_seconds=round(duration, 2),
        )
        return result

    async def cancel(self, handle: ProcessHandle) -> bool:
        """Terminate the process behind ``handle``.

        Sends SIGTERM to the process group, waits up to
        ``cancel_grace_seconds`` and then sends SIGKILL. Safe to call more
        than once and on a handle whose process has not started yet; in
        that case the launch is skipped.

        Returns:
            True if a live process was signalled, False otherwise.
        """
        handle.cancel_requested = True
        process = handle.process
        if process is None or process.returncode is not None:
            _logger.debug("process.cancel_noop", handle=handle.label)
            return False

        grace = self._config.cancel_grace_seconds
        _logger.info("process.cancelling", handle=handle.label, grace_seconds=grace)
        self._signal_group(process, signal.SIGTERM)
        try:
            await asyncio.wait_for(asyncio.shield(process.wait()), timeout=grace)
        except TimeoutError:
            _logger.warning("process.force_kill", handle=handle.label)
            await self._kill_process_group(process)
        return True

    async def _drain(
        self,
        readers: asyncio.Future[list[None]],
        process: asyncio.subprocess.Process,
    ) -> None:
        """Wait for both readers after exit; grandchildren may hold the pipes."""
        try:
            await asyncio.wait_for(
                asyncio.shield(readers), timeout=self._config.stream_drain_seconds,
            )
        except TimeoutError:
            _logger.warning(
                "process.drain_timeout",
                pid=process.pid,
                timeout_seconds=self._config.stream_drain_seconds,
            )
            self._signal_group(process, signal.SIGKILL)
            readers.cancel()
            await asyncio.gather(readers, return_exceptions=True)

    @staticmethod
    async def _read_stream(
        stream: asyncio.StreamReader | None,
        buffer: _TailBuffer,
    ) -> None:
        if stream is None:
            return
        while True:
            chunk = await stream.read(_READ_CHUNK_SIZE)
            if not chunk:
                break
            buffer.append(chunk)

    @staticmethod
    def _signal_group(process: asyncio.subprocess.Process, sig: signal.Signals) -> None:
        try:
            os.killpg(process.pid, sig)
        except ProcessLookupError:
            pass
        except PermissionError:
            _logger.warning("process.signal_denied", pid=process.pid, signal=sig.name)

    async def _kill_process_group(self, process: asyncio.subprocess.Process) -> None:
        """Kill the entire process group (process + all children)."""
        self._signal_group(process, signal.SIGKILL)
        try:
            process.kill()
        except ProcessLookupError:
            pass
        await process.wait()


__all__ = ["ProcessHandle", "ProcessResult", "ProcessSupervisor"]
