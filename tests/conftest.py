"""Pytest fixtures for pijul-fetch tests."""
import json
import stat
import sys
from pathlib import Path
from typing import Dict, List, Optional

import pytest

from pijul_fetch.core.errors import ProbeError
from pijul_fetch.fetcher import PijulProbe, RepoStatus, Resolver
from pijul_fetch.inputs import PijulInputScheme
from pijul_fetch.store import ContentStore, SqliteFetchCache

# Emulates the pijul subcommands the probe uses. The "remote" is a directory
# holding remote.json: {"channel", "state", "timestamp", "files", ...flags}.
FAKE_PIJUL = '''#!{python}
import json
import os
import sys
from pathlib import Path
from urllib.parse import urlparse


def local_path(url):
    if url.startswith("file://"):
        return Path(urlparse(url).path)
    return Path(url)


def clone(args):
    channel = state = None
    while args and args[0].startswith("--"):
        if args[0] == "--channel":
            channel = args[1]
        elif args[0] == "--state":
            state = args[1]
        args = args[2:]
    src, dest = local_path(args[0]), Path(args[1])
    remote = json.loads((src / "remote.json").read_text())
    with open(src / "clones.log", "a") as f:
        f.write(json.dumps({{"channel": channel, "state": state}}) + "\\n")
    if remote.get("fail_clone"):
        print("Error: repository not found", file=sys.stderr)
        return 1
    dest.mkdir(parents=True)
    for rel, content in remote["files"].items():
        path = dest / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)
    meta = dest / ".pijul"
    meta.mkdir()
    (meta / "status.json").write_text(json.dumps(remote))
    (meta / "pristine").write_text(os.urandom(8).hex())
    return 0


def main(argv):
    cmd, args = argv[0], argv[1:]
    if cmd == "clone":
        return clone(args)
    if cmd in ("add", "record"):
        with open(Path.cwd() / "pijul-commands.log", "a") as f:
            f.write(json.dumps(argv) + "\\n")
        return 0
    status = json.loads((Path.cwd() / ".pijul" / "status.json").read_text())
    if cmd == "channel":
        if status.get("fail_channel"):
            return 1
        for name in status.get("other_channels", []):
            print("  " + name)
        print("* " + status["channel"])
        return 0
    if cmd == "log":
        if status.get("fail_log"):
            print("Error: no changes", file=sys.stderr)
            return 1
        entry = {{"hash": "H", "state": status["state"], "timestamp": status["timestamp"]}}
        print(json.dumps([entry]))
        return 0
    return 2


sys.exit(main(sys.argv[1:]))
'''


class FakeRemote:
    """A directory the fake pijul treats as a remote repository."""

    def __init__(self, path: Path):
        self.path = path
        self.path.mkdir(parents=True, exist_ok=True)

    @property
    def url(self) -> str:
        return f"file://{self.path}"

    def publish(
        self,
        state: str,
        files: Optional[Dict[str, str]] = None,
        channel: str = "main",
        timestamp: str = "2023-11-14T22:13:20Z",
        **flags,
    ) -> None:
        remote = {
            "channel": channel,
            "state": state,
            "timestamp": timestamp,
            "files": files if files is not None else {"README": f"state {state}\n"},
        }
        remote.update(flags)
        (self.path / "remote.json").write_text(json.dumps(remote))

    def clones(self) -> List[dict]:
        log = self.path / "clones.log"
        if not log.exists():
            return []
        return [json.loads(line) for line in log.read_text().splitlines()]


class StubProbe:
    """In-process probe: clones write ``files`` and report ``status``."""

    def __init__(self):
        self.status = RepoStatus(channel="main", state="S1", last_modified=1700000000)
        self.files = {"README": "hello\n"}
        self.status_error: Optional[str] = None
        self.clones: List[dict] = []

    def clone(self, url, dest, channel=None, state=None):
        self.clones.append({"url": url, "dest": dest, "channel": channel, "state": state})
        dest.mkdir(parents=True)
        for rel, content in self.files.items():
            path = dest / rel
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(content)
        meta = dest / ".pijul"
        meta.mkdir()
        (meta / "changes").write_text(f"clone #{len(self.clones)}")

    def get_status(self, repo):
        if self.status_error:
            raise ProbeError(self.status_error)
        return self.status


class FakeClock:
    def __init__(self, now: float = 1_800_000_000):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def fake_pijul(tmp_path: Path) -> Path:
    """Executable fake pijul script."""
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()
    script = bin_dir / "pijul"
    script.write_text(FAKE_PIJUL.format(python=sys.executable))
    script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return script


@pytest.fixture
def remote(tmp_path: Path) -> FakeRemote:
    """Fake remote at state S1 on channel main."""
    fake = FakeRemote(tmp_path / "remote" / "repo")
    fake.publish("S1")
    return fake


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def stub_probe() -> StubProbe:
    return StubProbe()


@pytest.fixture
def cache(tmp_path: Path, clock: FakeClock) -> SqliteFetchCache:
    return SqliteFetchCache(tmp_path / "fetcher.sqlite", ttl=3600, clock=clock)


@pytest.fixture
def store(tmp_path: Path) -> ContentStore:
    return ContentStore(tmp_path / "store")


@pytest.fixture
def scheme() -> PijulInputScheme:
    return PijulInputScheme()


@pytest.fixture
def resolver(scheme, stub_probe, cache, store) -> Resolver:
    """Strict resolver wired to the stub probe."""
    return Resolver(scheme, stub_probe, cache, store)


@pytest.fixture
def pijul_resolver(tmp_path: Path, fake_pijul: Path, clock: FakeClock) -> Resolver:
    """Resolver driving the fake pijul executable through subprocesses."""
    probe = PijulProbe(str(fake_pijul))
    return Resolver(
        PijulInputScheme(probe=probe),
        probe,
        SqliteFetchCache(tmp_path / "pijul-cache.sqlite", ttl=3600, clock=clock),
        ContentStore(tmp_path / "pijul-store"),
    )
