"""
Network Diagnostics - advisory probes run before a connect attempt.

Results only go to the log and the diagnostics endpoint; a failing probe
never blocks share enumeration.
"""

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import List, Optional, Sequence

from share_dumper.config import Settings
from share_dumper.core.exceptions import LaunchFailure
from share_dumper.services.process.subprocess_runner import SubprocessRunner


@dataclass
class ProbeResult:
    name: str
    command: List[str]
    exit_code: Optional[int] = None
    output: str = ""
    timed_out: bool = False
    error: Optional[str] = None

    @property
    def passed(self) -> bool:
        return self.error is None and not self.timed_out and self.exit_code == 0


@dataclass
class DiagnosticsReport:
    host: str
    started_at: datetime = field(default_factory=datetime.now)
    probes: List[ProbeResult] = field(default_factory=list)

    @property
    def reachable(self) -> bool:
        """True when ping or any SMB port probe passed."""
        return any(p.passed for p in self.probes if p.name == "ping" or p.name.startswith("port_"))

    def to_dict(self) -> dict:
        return {
            "host": self.host,
            "started_at": self.started_at.isoformat(),
            "reachable": self.reachable,
            "probes": [dict(asdict(p), passed=p.passed) for p in self.probes],
        }


class NetworkDiagnostics:
    def __init__(self, settings: Settings, runner: SubprocessRunner):
        self.settings = settings
        self._runner = runner

    async def run(self, host: str) -> DiagnosticsReport:
        """Run every probe in sequence. Never raises."""
        logging.info(f"Running network diagnostics for {host}")
        report = DiagnosticsReport(host=host)

        report.probes.append(
            await self._probe(
                "ping", self.settings.ping_path, ["-c", "3", "-W", "2000", host], self.settings.ping_timeout_seconds
            )
        )
        for port in self.settings.smb_ports:
            report.probes.append(
                await self._probe(
                    f"port_{port}",
                    self.settings.nc_path,
                    ["-z", "-v", "-w", "5", host, str(port)],
                    self.settings.port_timeout_seconds,
                )
            )
        report.probes.append(
            await self._probe(
                "traceroute",
                self.settings.traceroute_path,
                ["-m", "5", host],
                self.settings.traceroute_timeout_seconds,
            )
        )
        report.probes.append(
            await self._probe(
                "smb_status", self.settings.smbutil_path, ["status", host], self.settings.port_timeout_seconds
            )
        )

        for probe in report.probes:
            if probe.passed:
                logging.info(f"Diagnostics {probe.name} for {host}: ok")
            else:
                logging.warning(
                    f"Diagnostics {probe.name} for {host}: failed "
                    f"(exit {probe.exit_code}, timed out: {probe.timed_out}, error: {probe.error})"
                )
        return report

    async def _probe(self, name: str, command: str, args: Sequence[str], timeout: float) -> ProbeResult:
        probe = ProbeResult(name=name, command=[command, *args])
        try:
            result = await self._runner.run_bounded(command, args, timeout=timeout)
        except LaunchFailure as e:
            probe.error = str(e)
            return probe

        probe.exit_code = result.exit_code
        probe.timed_out = result.timed_out
        # nc reports success on stderr
        probe.output = "\n".join(part for part in (result.stdout, result.stderr) if part)
        return probe
