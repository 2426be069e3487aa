"""Repository probe: run pijul and read channel/state from a clone."""
import json
import logging
import re
import subprocess
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from pydantic import BaseModel, ConfigDict

from pijul_fetch.core.errors import ExecError, ProbeError

logger = logging.getLogger(__name__)

# Pijul's internal bookkeeping directory inside a clone
METADATA_DIR = ".pijul"

# Marker prefixing the active channel in `pijul channel` output
CURRENT_CHANNEL_MARKER = "*"

_RFC3339 = re.compile(
    r"^(\d{4}-\d{2}-\d{2})[Tt ](\d{2}:\d{2}:\d{2})(?:\.(\d+))?([Zz]|[+-]\d{2}:\d{2})$"
)


class RepoStatus(BaseModel):
    """Channel and latest state of a freshly cloned repository."""

    model_config = ConfigDict(frozen=True)

    channel: str
    state: str
    last_modified: int

    def to_info(self) -> dict:
        """Cache/descriptor metadata for this status."""
        return {
            "channel": self.channel,
            "state": self.state,
            "lastModified": self.last_modified,
        }


def parse_rfc3339(timestamp: str) -> int:
    """Convert an RFC3339 timestamp to integer seconds since the epoch.

    Timezone offsets are applied. Fractions beyond microseconds (pijul
    prints nanoseconds) are truncated.

    Examples:
        2023-11-14T22:13:20Z -> 1700000000
        2023-11-15T00:13:20+02:00 -> 1700000000
    """
    match = _RFC3339.match(timestamp.strip())
    if not match:
        raise ProbeError(f"invalid RFC3339 timestamp '{timestamp}'")

    date, time, fraction, offset = match.groups()
    micros = ((fraction or "") + "000000")[:6]
    if offset in ("Z", "z"):
        offset = "+00:00"

    try:
        parsed = datetime.fromisoformat(f"{date}T{time}.{micros}{offset}")
    except ValueError as e:
        raise ProbeError(f"invalid RFC3339 timestamp '{timestamp}': {e}")
    return int(parsed.timestamp())


def parse_log_output(output: str) -> Tuple[str, int]:
    """Extract (state, lastModified) from `pijul log --output-format json`."""
    try:
        entries = json.loads(output)
    except json.JSONDecodeError as e:
        raise ProbeError(f"could not parse pijul log output: {e}")

    if not isinstance(entries, list) or not entries:
        raise ProbeError("pijul log returned no entries")

    entry = entries[0]
    if not isinstance(entry, dict):
        raise ProbeError("pijul log entry is not an object")

    state = entry.get("state")
    timestamp = entry.get("timestamp")
    if not isinstance(state, str) or not state:
        raise ProbeError("pijul log entry has no 'state'")
    if not isinstance(timestamp, str):
        raise ProbeError("pijul log entry has no 'timestamp'")

    return state, parse_rfc3339(timestamp)


def parse_channel_listing(output: str) -> str:
    """Return the channel marked current in `pijul channel` output.

    Each line is "<marker> <name>"; the active channel's marker is "*".
    """
    for line in output.splitlines():
        if not line:
            continue
        if line.startswith(CURRENT_CHANNEL_MARKER):
            name = line[2:].rstrip()
            if name:
                return name
    raise ProbeError("could not parse current channel")


class PijulProbe:
    """Thin adapter around the pijul executable.

    Args:
        program: Name or path of the pijul executable
        timeout: Optional timeout in seconds for each invocation
    """

    def __init__(self, program: str = "pijul", timeout: Optional[float] = None):
        self.program = program
        self.timeout = timeout

    def run(
        self,
        args: Sequence[str],
        cwd: Optional[Path] = None,
        input: Optional[str] = None,
        interactive: bool = False,
    ) -> str:
        """Run pijul and return its stdout.

        Interactive runs inherit the terminal's stdin and stderr so pijul can
        prompt (e.g. for credentials); only stdout is captured.

        Raises:
            ExecError: if pijul cannot be started or exits non-zero
        """
        cmd: List[str] = [self.program, *args]
        logger.debug(f"Running {' '.join(cmd)}")

        kwargs = {}
        if input is None:
            kwargs["stdin"] = None if interactive else subprocess.DEVNULL
        else:
            kwargs["input"] = input

        try:
            result = subprocess.run(
                cmd,
                cwd=str(cwd) if cwd is not None else None,
                stdout=subprocess.PIPE,
                stderr=None if interactive else subprocess.PIPE,
                text=True,
                timeout=self.timeout,
                **kwargs,
            )
        except FileNotFoundError as e:
            raise ExecError(self.program, args, None, str(e))
        except subprocess.TimeoutExpired:
            raise ExecError(self.program, args, None, f"timed out after {self.timeout}s")

        if result.returncode != 0:
            stderr = (result.stderr or "").strip()
            raise ExecError(self.program, args, result.returncode, stderr)

        return result.stdout

    def clone(
        self,
        url: str,
        dest: Path,
        channel: Optional[str] = None,
        state: Optional[str] = None,
    ) -> None:
        """Clone ``url`` into ``dest``, optionally starting from channel/state."""
        args = ["clone"]
        if channel is not None:
            args += ["--channel", channel]
        if state is not None:
            args += ["--state", state]
        args += [url, str(dest)]

        logger.info(f"Cloning {url} to {dest}")
        self.run(args, interactive=True)

    def get_state(self, repo: Path) -> Tuple[str, int]:
        """Latest state identifier and its timestamp."""
        try:
            output = self.run(
                ["log", "--output-format", "json", "--state", "--limit", "1"],
                cwd=repo,
            )
        except ExecError as e:
            raise ProbeError(f"could not read state of {repo}: {e}")
        return parse_log_output(output)

    def get_channel(self, repo: Path) -> str:
        """Name of the channel the clone is on."""
        try:
            output = self.run(["channel"], cwd=repo)
        except ExecError as e:
            raise ProbeError(f"could not read channel of {repo}: {e}")
        return parse_channel_listing(output)

    def get_status(self, repo: Path) -> RepoStatus:
        state, last_modified = self.get_state(repo)
        channel = self.get_channel(repo)
        return RepoStatus(channel=channel, state=state, last_modified=last_modified)
