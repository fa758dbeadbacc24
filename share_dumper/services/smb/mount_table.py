"""Reads SMB entries from the system mount table."""

import logging
from typing import List

from share_dumper.core.exceptions import LaunchFailure
from share_dumper.models import MountedShare
from share_dumper.services.process.subprocess_runner import SubprocessRunner


def parse_mount_table(output: str, mount_root: str = "/Volumes", marker: str = "smbfs") -> List[MountedShare]:
    """
    Parse ``mount`` output into SMB entries under ``mount_root``.

    Lines look like ``//user@host/Share on /Volumes/Share (smbfs, nodev, ...)``.
    """
    root = mount_root.rstrip("/") + "/"
    mounts = []
    for line in output.splitlines():
        if marker not in line or root not in line:
            continue

        source, separator, remaining = line.partition(" on ")
        if not separator:
            continue

        mount_point, paren, _ = remaining.partition(" (")
        if not paren:
            continue

        mounts.append(MountedShare(source=source, mount_point=mount_point))
    return mounts


async def list_mounted_shares(runner: SubprocessRunner, mount_path: str, mount_root: str, timeout: float) -> List[MountedShare]:
    """
    Run the mount binary and return its SMB entries.

    A failing, missing or timed out mount binary yields an empty list.
    """
    try:
        result = await runner.run_bounded(mount_path, [], timeout=timeout)
    except LaunchFailure as e:
        logging.warning(f"Could not read mount table: {e}")
        return []
    if not result.succeeded:
        logging.warning(
            f"Could not read mount table (exit {result.exit_code}, timed out: {result.timed_out}): "
            f"{result.stderr.strip()}"
        )
        return []
    return parse_mount_table(result.stdout, mount_root)
