"""
Per-job transfer logs.

Every job gets one log file, named at submission and stable for the job's
lifetime. The header identifies the job; below the separator the raw rsync
output follows exactly as produced.
"""

import asyncio
import logging
import time
from datetime import datetime
from pathlib import Path
from typing import Dict, List

import aiofiles
import aiofiles.os

from share_dumper.core.exceptions import LogCreationFailure
from share_dumper.models import JobSpec

LOG_SEPARATOR = "=========================================="
LOG_TITLE = "Share Dumper Copy Job Log"
_DIRECTORY_MODE = 0o700


class JobLogManager:
    def __init__(self, directory: Path, retention_days: int = 30):
        self.directory = Path(directory).expanduser()
        self.retention_days = retention_days

    def log_path_for(self, job_id: str, created_at: datetime) -> Path:
        """``<first 8 chars of id>_<YYYYmmdd_HHMMSS>.log`` inside the log directory."""
        timestamp = created_at.strftime("%Y%m%d_%H%M%S")
        return self.directory / f"{job_id[:8]}_{timestamp}.log"

    @staticmethod
    def render_header(spec: JobSpec) -> str:
        return (
            f"{LOG_TITLE}\n"
            f"Job ID: {spec.job_id}\n"
            f"Created: {spec.created_at.isoformat(sep=' ', timespec='seconds')}\n"
            f"Server: {spec.server_host}\n"
            f"Sources: {', '.join(spec.sources)}\n"
            f"Destination: {spec.destination}\n"
            f"Args: {' '.join(spec.rsync_args)}\n"
            f"\n"
            f"{LOG_SEPARATOR}\n"
            f"\n"
        )

    async def create(self, spec: JobSpec) -> Path:
        """
        Start a run in the job's log file by appending a fresh header.

        A retried job keeps the output of its earlier runs above the new header.

        Raises:
            LogCreationFailure: The directory or file could not be written.
        """
        if not spec.log_path:
            raise LogCreationFailure("<unassigned>", "job has no log path")

        log_path = Path(spec.log_path)
        try:
            if not await aiofiles.os.path.exists(log_path.parent):
                await aiofiles.os.makedirs(log_path.parent, mode=_DIRECTORY_MODE, exist_ok=True)
            async with aiofiles.open(log_path, "a", encoding="utf-8") as f:
                await f.write(self.render_header(spec))
        except OSError as e:
            logging.error(f"Could not create job log {log_path}: {e}")
            raise LogCreationFailure(str(log_path), str(e)) from e

        logging.debug(f"Job log created: {log_path}")
        return log_path

    def ensure_directory(self) -> None:
        self.directory.mkdir(parents=True, exist_ok=True, mode=_DIRECTORY_MODE)

    def list_log_files(self) -> List[Dict]:
        """All job logs, newest first."""
        if not self.directory.exists():
            return []

        entries = []
        for log_file in self.directory.glob("*.log"):
            if not log_file.is_file():
                continue
            try:
                stat = log_file.stat()
            except OSError as e:
                logging.warning(f"Failed to get stats for {log_file}: {e}")
                continue
            entries.append({
                "filename": log_file.name,
                "size_bytes": stat.st_size,
                "modified_time": datetime.fromtimestamp(stat.st_mtime).isoformat(),
            })

        entries.sort(key=lambda entry: entry["modified_time"], reverse=True)
        return entries

    def resolve(self, filename: str) -> Path:
        """
        Path of a log file inside the directory.

        Raises:
            FileNotFoundError: No such log, or the name points outside the directory.
        """
        candidate = (self.directory / filename).resolve()
        if candidate.parent != self.directory.resolve() or not candidate.is_file():
            raise FileNotFoundError(filename)
        return candidate

    def total_size_bytes(self) -> int:
        if not self.directory.exists():
            return 0
        return sum(f.stat().st_size for f in self.directory.iterdir() if f.is_file())

    def cleanup_old_logs(self) -> int:
        """Delete logs older than the retention window. Returns the number deleted."""
        if not self.directory.exists():
            return 0

        cutoff = time.time() - self.retention_days * 24 * 60 * 60
        deleted = 0
        for log_file in self.directory.iterdir():
            try:
                if log_file.is_file() and log_file.stat().st_mtime < cutoff:
                    log_file.unlink()
                    deleted += 1
                    logging.debug(f"Deleted old job log: {log_file.name}")
            except OSError as e:
                logging.error(f"Failed to check/delete job log {log_file.name}: {e}")

        if deleted:
            logging.info(f"Job log cleanup removed {deleted} file(s) older than {self.retention_days} days")
        return deleted

    async def cleanup_old_logs_async(self) -> int:
        return await asyncio.to_thread(self.cleanup_old_logs)


class JobLogWriter:
    """Append-only writer for one job log, open for the duration of a transfer."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self._file = None
        self._pending: List[str] = []

    async def __aenter__(self) -> "JobLogWriter":
        self._file = await aiofiles.open(self.path, "a", encoding="utf-8")
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.flush()
        await self._file.close()
        self._file = None

    def write_line(self, line: str) -> None:
        """Queue a line; callbacks from the stream readers cannot await."""
        self._pending.append(line + "\n")

    async def flush(self) -> None:
        if self._file is None or not self._pending:
            return
        chunk = "".join(self._pending)
        self._pending.clear()
        await self._file.write(chunk)
        await self._file.flush()

    async def flush_until(self, stop: asyncio.Event, interval: float = 0.5) -> None:
        """Flush queued lines every interval until stop is set."""
        while not stop.is_set():
            try:
                await asyncio.wait_for(stop.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass
            await self.flush()
