"""
Mount Coordinator - mounts shares under the mount root and tears them down.

Owns the set of currently mounted SMB shares. Mount and unmount calls are
serialized so a conflict sweep can never race a mount in progress.
"""

import asyncio
import logging
from pathlib import Path
from typing import Iterable, List, Optional, Set
from urllib.parse import quote

from share_dumper.config import Settings
from share_dumper.core.events.connection_events import MountStatusChangedEvent
from share_dumper.core.events.event_bus import DomainEventBus
from share_dumper.core.exceptions import LaunchFailure, MountFailure, UnmountFailure
from share_dumper.models import Credential, MountedShare, MountStatus, Share
from share_dumper.services.process.subprocess_runner import SubprocessRunner
from share_dumper.services.smb.mount_table import list_mounted_shares


def build_mount_script(share: Share, credential: Credential) -> str:
    """
    AppleScript ``mount volume`` command for a share.

    Each URL part is percent-encoded, then the URL is escaped as an
    AppleScript string literal.
    """
    username = quote(credential.formatted_username, safe="")
    password = quote(credential.password.get_secret_value(), safe="")
    host = f"[{share.host}]" if ":" in share.host else quote(share.host, safe="")
    url = f"smb://{username}:{password}@{host}/{quote(share.name, safe='')}"
    escaped = url.replace("\\", "\\\\").replace('"', '\\"')
    return f'mount volume "{escaped}"'


class MountCoordinator:
    def __init__(
        self,
        settings: Settings,
        runner: SubprocessRunner,
        event_bus: Optional[DomainEventBus] = None,
    ):
        self.settings = settings
        self._runner = runner
        self._event_bus = event_bus
        self._lock = asyncio.Lock()
        self._mounted: List[MountedShare] = []

    @property
    def mounted_shares(self) -> List[MountedShare]:
        return list(self._mounted)

    async def mount(self, shares: Iterable[Share], credential: Credential) -> List[Path]:
        """
        Mount each share in order and return the verified mount paths.

        Shares from other hosts in the same conflict group are unmounted first.

        Raises:
            MountFailure: A share could not be mounted or is not browsable.
                Shares before it stay mounted.
        """
        shares = list(shares)
        mounted_paths: List[Path] = []

        async with self._lock:
            try:
                for host in dict.fromkeys(share.host for share in shares):
                    await self._unmount_conflicting(host)

                for share in shares:
                    await self._mount_one(share, credential)
                    mounted_paths.append(share.mount_path)
            finally:
                await self._refresh()

        return mounted_paths

    async def unmount_all(self) -> List[str]:
        """
        Unmount every SMB share under the mount root, best effort.

        Returns the mount points that could not be unmounted.
        """
        failed = []
        async with self._lock:
            await self._refresh()
            for mount in list(self._mounted):
                try:
                    await self._unmount_path(mount.mount_point)
                    await self._publish(mount.volume_name, mount.host or "", MountStatus.UNMOUNTED, mount.mount_point)
                except UnmountFailure as e:
                    logging.error(f"{e}")
                    failed.append(mount.mount_point)
                    await self._publish(mount.volume_name, mount.host or "", MountStatus.FAILED, mount.mount_point, str(e))
            await self._refresh()
        return failed

    async def unmount(self, mount_point: str) -> None:
        """
        Raises:
            UnmountFailure: Both the graceful and the forced unmount failed.
        """
        async with self._lock:
            try:
                await self._unmount_path(mount_point)
            finally:
                await self._refresh()

    async def refresh_mounted_shares(self) -> List[MountedShare]:
        async with self._lock:
            await self._refresh()
        return self.mounted_shares

    async def _refresh(self) -> None:
        self._mounted = await list_mounted_shares(
            self._runner,
            self.settings.mount_path,
            self.settings.mount_root,
            self.settings.mount_table_timeout_seconds,
        )
        logging.debug(f"Mounted SMB shares: {[m.mount_point for m in self._mounted]}")

    async def _unmount_conflicting(self, host: str) -> None:
        group: Set[str] = set(self.settings.conflict_group_for(host))
        if not group:
            return

        for mount in await list_mounted_shares(
            self._runner, self.settings.mount_path, self.settings.mount_root, self.settings.mount_table_timeout_seconds
        ):
            if mount.host not in group:
                continue
            logging.info(f"Unmounting conflicting share {mount.source} at {mount.mount_point} before mounting from {host}")
            try:
                await self._unmount_path(mount.mount_point)
            except UnmountFailure as e:
                logging.warning(f"Could not unmount conflicting share: {e}")

    async def _mount_one(self, share: Share, credential: Credential) -> None:
        logging.info(f"Attempting to mount share '{share.name}' from {share.host}")
        await self._publish(share.name, share.host, MountStatus.ATTEMPTING)

        try:
            await self._mount_and_verify(share, credential)
        except MountFailure as e:
            logging.error(f"Mount failed for '{share.name}' on {share.host}: {e.detail}")
            await self._publish(share.name, share.host, MountStatus.FAILED, error=e.detail)
            raise

        logging.info(f"Successfully mounted and verified share '{share.name}' at {share.mount_path}")
        await self._publish(share.name, share.host, MountStatus.SUCCESS, str(share.mount_path))

    async def _mount_and_verify(self, share: Share, credential: Credential) -> None:
        try:
            result = await self._runner.run_bounded(
                self.settings.osascript_path,
                ["-e", build_mount_script(share, credential)],
                timeout=self.settings.mount_timeout_seconds,
            )
        except LaunchFailure as e:
            raise MountFailure(share.name, str(e)) from e

        if result.timed_out:
            raise MountFailure(share.name, f"mount timed out after {self.settings.mount_timeout_seconds:.0f}s")
        if result.exit_code != 0:
            raise MountFailure(share.name, result.stderr.strip() or "Unknown mount error")

        # The mount command can succeed before the volume is browsable
        await asyncio.sleep(self.settings.mount_settle_seconds)

        try:
            check = await self._runner.run_bounded(
                self.settings.ls_path, [str(share.mount_path)], timeout=self.settings.mount_timeout_seconds
            )
        except LaunchFailure as e:
            raise MountFailure(share.name, str(e)) from e

        if not check.succeeded:
            raise MountFailure(share.name, f"{share.mount_path} is not accessible")

    async def _unmount_path(self, path: str) -> None:
        """diskutil unmount, then umount -f."""
        timeout = self.settings.unmount_timeout_seconds
        try:
            result = await self._runner.run_bounded(self.settings.diskutil_path, ["unmount", path], timeout=timeout)
            if result.succeeded:
                logging.info(f"Unmounted {path}")
                return
            logging.warning(f"diskutil unmount {path} failed: {result.stderr.strip() or result.stdout.strip()}")
        except LaunchFailure as e:
            logging.warning(f"{e}")

        try:
            result = await self._runner.run_bounded(self.settings.umount_path, ["-f", path], timeout=timeout)
        except LaunchFailure as e:
            raise UnmountFailure(path) from e

        if not result.succeeded:
            raise UnmountFailure(path)
        logging.info(f"Force-unmounted {path}")

    async def _publish(
        self,
        share_name: str,
        host: str,
        status: MountStatus,
        mount_path: Optional[str] = None,
        error: Optional[str] = None,
    ) -> None:
        if self._event_bus is None:
            return
        await self._event_bus.publish(
            MountStatusChangedEvent(share_name=share_name, host=host, status=status, mount_path=mount_path, error=error)
        )
