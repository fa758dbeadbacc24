"""Share Connector - lists the disk shares a host advertises via smbutil."""

import asyncio
import logging
import os
import tempfile
import uuid
from pathlib import Path
from typing import List, Optional

import aiofiles
import aiofiles.os

from share_dumper.config import Settings
from share_dumper.core.exceptions import AuthenticationFailed, EnumerationFailure, LaunchFailure
from share_dumper.models import Credential, Share
from share_dumper.services.process.subprocess_runner import CommandResult, SubprocessRunner

# Only the timeout is formatted into the Tcl source; everything else comes from the environment
EXPECT_SCRIPT_TEMPLATE = """#!/usr/bin/expect -f
set timeout {timeout}
log_user 1
spawn $env(SMBUTIL) view "//$env(SMB_USER)@$env(SMB_HOST)"
expect {{
    "Password for *:" {{
        send -- "$env(SMB_PASSWORD)\\r"
        exp_continue
    }}
    eof
}}
catch wait result
exit [lindex $result 3]
"""

# smbutil: server rejected the connection: Authentication error
AUTH_ERROR_MARKER = "authentication error"


def parse_shares_output(output: str, host: str, mount_root: str = "/Volumes") -> List[Share]:
    """
    Extract mountable shares from ``smbutil view`` output.

    A line is a share when it has at least two whitespace tokens, the second
    is ``disk`` (any case) and the first has no ``$``. Everything else,
    headers and trailers included, is ignored.
    """
    shares = []
    for line in output.splitlines():
        tokens = line.split()
        if len(tokens) < 2:
            continue
        name, share_type = tokens[0], tokens[1]
        if share_type.lower() == "disk" and "$" not in name:
            shares.append(Share(name=name, type=share_type, host=host, mount_root=mount_root))
    return shares


class ShareConnector:
    """
    Enumerates shares with up to three strategies, one per attempt.

    1. ``smbutil view //<user without domain>@host``, password on stdin,
       falling back to an expect script when smbutil rejects piped input
    2. the same with the username as typed, only when it differs
    3. ``smbutil view -G //host`` as guest
    """

    def __init__(self, settings: Settings, runner: SubprocessRunner):
        self.settings = settings
        self._runner = runner

    async def enumerate_shares(self, host: str, credential: Credential) -> List[Share]:
        """
        Raises:
            EnumerationFailure: Every attempt failed; carries the last error.
                AuthenticationFailed when that error was a rejected login.
        """
        max_attempts = max(1, self.settings.enumeration_max_attempts)
        last_error: Optional[Exception] = None

        for attempt in range(1, max_attempts + 1):
            if attempt == 2 and credential.formatted_username == credential.username:
                logging.info(f"Skipping attempt 2 for {host}: username has no domain part")
                continue

            try:
                shares = await self._attempt(attempt, host, credential)
                logging.info(f"Found {len(shares)} share(s) on {host} (attempt {attempt})")
                return shares
            except (EnumerationFailure, LaunchFailure) as e:
                last_error = e
                logging.error(f"Share enumeration attempt {attempt} for {host} failed: {e}")

            if attempt < max_attempts:
                await asyncio.sleep(self.settings.enumeration_retry_delay_seconds)

        if isinstance(last_error, EnumerationFailure):
            raise last_error
        raise EnumerationFailure(str(last_error) if last_error else "")

    async def _attempt(self, attempt: int, host: str, credential: Credential) -> List[Share]:
        if attempt == 1:
            logging.info(f"Trying username-only format: //{credential.formatted_username}@{host}")
            return await self._enumerate_as_user(host, credential.formatted_username, credential)
        if attempt == 2:
            logging.info(f"Trying original username format: //{credential.username}@{host}")
            return await self._enumerate_as_user(host, credential.username, credential)
        logging.info(f"Trying guest access to {host}")
        return await self._enumerate_as_guest(host)

    async def _enumerate_as_user(self, host: str, username: str, credential: Credential) -> List[Share]:
        try:
            return await self._enumerate_direct(host, username, credential)
        except (EnumerationFailure, LaunchFailure) as e:
            logging.info(f"Direct smbutil failed ({e}), trying expect script")
            return await self._enumerate_with_expect(host, username, credential)

    async def _enumerate_direct(self, host: str, username: str, credential: Credential) -> List[Share]:
        password = credential.password.get_secret_value()
        result = await self._runner.run_bounded(
            self.settings.smbutil_path,
            ["view", f"//{username}@{host}"],
            timeout=self.settings.enumeration_timeout_seconds,
            env={"TERM": "dumb", "HOME": tempfile.gettempdir()},
            stdin_bytes=f"{password}\n".encode(),
        )
        return self._shares_from(result, host, "smbutil")

    async def _enumerate_with_expect(self, host: str, username: str, credential: Credential) -> List[Share]:
        script_path = Path(tempfile.gettempdir()) / f"smbutil_expect_{uuid.uuid4().hex[:8]}.exp"
        script = EXPECT_SCRIPT_TEMPLATE.format(timeout=int(self.settings.enumeration_timeout_seconds))

        try:
            async with aiofiles.open(script_path, "w", encoding="utf-8") as f:
                await f.write(script)
            os.chmod(script_path, 0o700)

            result = await self._runner.run_bounded(
                self.settings.expect_path,
                [str(script_path)],
                timeout=self.settings.enumeration_timeout_seconds,
                env={
                    "SMBUTIL": self.settings.smbutil_path,
                    "SMB_HOST": host,
                    "SMB_USER": username,
                    "SMB_PASSWORD": credential.password.get_secret_value(),
                },
            )
        finally:
            try:
                await aiofiles.os.remove(script_path)
            except FileNotFoundError:
                pass

        return self._shares_from(result, host, "expect")

    async def _enumerate_as_guest(self, host: str) -> List[Share]:
        result = await self._runner.run_bounded(
            self.settings.smbutil_path,
            ["view", "-G", f"//{host}"],
            timeout=self.settings.enumeration_timeout_seconds,
        )
        return self._shares_from(result, host, "smbutil guest")

    def _shares_from(self, result: CommandResult, host: str, label: str) -> List[Share]:
        if result.timed_out:
            raise EnumerationFailure(
                f"{label} timed out after {self.settings.enumeration_timeout_seconds:.0f} seconds."
            )
        if result.exit_code != 0:
            detail = result.stderr.strip() or result.stdout.strip() or f"exit code {result.exit_code}"
            logging.error(f"{label} failed for {host} with exit code {result.exit_code}: {detail}")
            if AUTH_ERROR_MARKER in detail.lower():
                raise AuthenticationFailed(detail)
            raise EnumerationFailure(detail)

        shares = parse_shares_output(result.stdout, host, self.settings.mount_root)
        logging.debug(f"{label} listed {len(shares)} share(s) on {host}")
        return shares
