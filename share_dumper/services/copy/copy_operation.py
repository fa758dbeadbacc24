"""
Copy Operation - runs rsync for every source tree of one job.

State per execution: created -> running -> succeeded | cancelled | failed.
The operation never touches the Job; it works on a read-only JobSpec and
reports through the progress/process callbacks and its returned CopyResult.
"""

import asyncio
import logging
import os
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional

import aiofiles.os

from share_dumper.core.exceptions import (
    IGNORABLE_EXIT_CODES,
    CopyCancelled,
    LaunchFailure,
    LogCreationFailure,
    ToolFailure,
)
from share_dumper.models import JobSpec
from share_dumper.services.copy.job_log import JobLogManager, JobLogWriter
from share_dumper.services.copy.models import CopyResult, CopyStatus
from share_dumper.services.copy.progress_parser import parse_progress
from share_dumper.services.process.subprocess_runner import RunningProcess, SubprocessRunner

HOMEBREW_RSYNC = "/opt/homebrew/bin/rsync"
SYSTEM_RSYNC = "/usr/bin/rsync"

ProgressCallback = Callable[[float], None]
ProcessCallback = Callable[[Optional[int]], None]


class OperationState(str, Enum):
    CREATED = "created"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    CANCELLED = "cancelled"
    FAILED = "failed"


def resolve_rsync_path(configured: Optional[str] = None) -> str:
    """Configured path, else Homebrew's rsync when installed, else the system one."""
    if configured:
        return configured
    if os.path.exists(HOMEBREW_RSYNC):
        return HOMEBREW_RSYNC
    return SYSTEM_RSYNC


class CopyOperation:
    def __init__(
        self,
        spec: JobSpec,
        runner: SubprocessRunner,
        job_log: JobLogManager,
        rsync_path: str,
        on_progress: Optional[ProgressCallback] = None,
        on_process: Optional[ProcessCallback] = None,
    ):
        self.spec = spec
        self._runner = runner
        self._job_log = job_log
        self._rsync_path = rsync_path
        self._on_progress = on_progress
        self._on_process = on_process

        self._state = OperationState.CREATED
        self._cancel_requested = False
        self._process: Optional[RunningProcess] = None

    @property
    def state(self) -> OperationState:
        return self._state

    @property
    def is_cancelled(self) -> bool:
        return self._cancel_requested

    def cancel(self) -> None:
        """
        Request cancellation.

        Checked before each source starts; a running rsync is interrupted with
        the runner's signal escalation.
        """
        if self._cancel_requested:
            return
        self._cancel_requested = True
        logging.info(f"Cancellation requested for job {self.spec.job_id[:8]}")

        if self._process is not None and self._process.is_running:
            self._process.cancel()

    async def execute(self) -> CopyResult:
        """Run every source in order and return exactly one terminal result."""
        if self._state != OperationState.CREATED:
            raise RuntimeError(f"CopyOperation for job {self.spec.job_id} already executed")

        start_time = datetime.now()
        completed: List[str] = []

        if self._cancel_requested:
            return self._finish(CopyStatus.CANCELLED, start_time, completed, str(CopyCancelled()))

        self._state = OperationState.RUNNING
        logging.info(f"Starting copy job {self.spec.job_id[:8]}: {len(self.spec.sources)} source(s) -> {self.spec.destination}")

        try:
            await self._job_log.create(self.spec)

            for source in self.spec.sources:
                if self._cancel_requested:
                    raise CopyCancelled()
                await self._copy_source(source)
                completed.append(source)

        except CopyCancelled as e:
            return self._finish(CopyStatus.CANCELLED, start_time, completed, str(e))
        except ToolFailure as e:
            return self._finish(CopyStatus.FAILED, start_time, completed, str(e), e.exit_code)
        except (LaunchFailure, LogCreationFailure) as e:
            return self._finish(CopyStatus.FAILED, start_time, completed, str(e))
        except OSError as e:
            return self._finish(CopyStatus.FAILED, start_time, completed, f"Failed to prepare destination: {e}")

        return self._finish(CopyStatus.SUCCEEDED, start_time, completed)

    async def _copy_source(self, source: str) -> None:
        source_path = source if source.endswith("/") else source + "/"
        destination_path = Path(self.spec.destination) / Path(source.rstrip("/")).name
        await aiofiles.os.makedirs(destination_path.parent, exist_ok=True)

        arguments = [*self.spec.rsync_args, source_path, str(destination_path)]
        logging.info(f"rsync {' '.join(arguments)}")

        async with JobLogWriter(Path(self.spec.log_path)) as log_writer:

            def on_line(stream: str, line: str) -> None:
                log_writer.write_line(line)
                fraction = parse_progress(line)
                if fraction is not None and self._on_progress is not None:
                    self._on_progress(fraction)

            process = await self._runner.start(self._rsync_path, arguments)
            self._process = process
            self._notify_process(process.pid)

            # cancel() may have landed while the process was being spawned
            if self._cancel_requested:
                process.cancel()

            stop_flushing = asyncio.Event()
            flusher = asyncio.create_task(log_writer.flush_until(stop_flushing))
            try:
                exit_code = await process.stream(on_line)
                await process.wait_closed()
            finally:
                stop_flushing.set()
                await flusher
                self._process = None
                self._notify_process(None)

        self._classify_exit(source, exit_code, process.stderr_text)

    def _classify_exit(self, source: str, exit_code: int, stderr_text: str) -> None:
        if exit_code == 0:
            logging.info(f"rsync finished {source}")
            return
        if exit_code in IGNORABLE_EXIT_CODES:
            logging.warning(f"rsync finished {source} with minor file I/O errors (exit code {exit_code})")
            return
        if self._cancel_requested:
            raise CopyCancelled()
        raise ToolFailure(exit_code, stderr_text or "Unknown error")

    def _notify_process(self, pid: Optional[int]) -> None:
        if self._on_process is not None:
            self._on_process(pid)

    def _finish(
        self,
        status: CopyStatus,
        start_time: datetime,
        completed: List[str],
        message: Optional[str] = None,
        exit_code: Optional[int] = None,
    ) -> CopyResult:
        self._state = OperationState(status.value)
        result = CopyResult(
            status=status,
            start_time=start_time,
            end_time=datetime.now(),
            message=message,
            exit_code=exit_code,
            sources_completed=completed,
        )
        if status == CopyStatus.FAILED:
            logging.error(f"Copy job {self.spec.job_id[:8]} failed: {message}")
        else:
            logging.info(f"Copy job {self.spec.job_id[:8]}: {result.get_summary()}")
        return result

