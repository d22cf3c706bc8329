"""Shared fixtures for multisite_queue tests."""

import itertools
from pathlib import Path

import pytest

from multisite_queue.balancer.config import WorkerTuning
from multisite_queue.balancer.process_manager import ProcessManager
from multisite_queue.reporter import CapturingReporter
from multisite_queue.sites import MultisitePaths, SiteRegistry

_pids = itertools.count(1000)


class FakeProcess:
    """Stand-in for subprocess.Popen that never spawns anything."""

    def __init__(self, command, env=None, ignore_terminate=False, **kwargs):
        self.command = command
        self.env = env or {}
        self.pid = next(_pids)
        self.returncode = None
        self.ignore_terminate = ignore_terminate
        self.terminate_calls = 0
        self.kill_calls = 0

    def poll(self):
        return self.returncode

    def terminate(self):
        self.terminate_calls += 1
        if not self.ignore_terminate:
            self.returncode = -15

    def kill(self):
        self.kill_calls += 1
        self.returncode = -9

    def wait(self, timeout=None):
        return self.returncode

    def crash(self, code=1):
        self.returncode = code


class FakePopen:
    """Callable factory recording every FakeProcess it creates."""

    def __init__(self):
        self.processes = []
        self.ignore_terminate = False
        self.fail = False

    def __call__(self, command, env=None, **kwargs):
        if self.fail:
            raise OSError("spawn failed")
        process = FakeProcess(command, env=env, ignore_terminate=self.ignore_terminate)
        self.processes.append(process)
        return process


class FakeClock:
    """Monotonic clock advanced only by the injected sleep."""

    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def reporter():
    return CapturingReporter()


@pytest.fixture
def fake_popen():
    return FakePopen()


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def process_manager(reporter, fake_popen, fake_clock):
    return ProcessManager(
        WorkerTuning(),
        reporter,
        popen=fake_popen,
        sleep=fake_clock.sleep,
        monotonic=fake_clock,
    )


def _make_site(root: Path, name: str, with_env: bool = True, env_text: str = "") -> Path:
    base = root / name / "app"
    base.mkdir(parents=True)
    (root / name / "public").mkdir()
    if with_env:
        (base / ".env").write_text(env_text)
    return base


@pytest.fixture
def sites_root(tmp_path):
    root = tmp_path / "sites"
    root.mkdir()
    return root


@pytest.fixture
def make_site(sites_root):
    def factory(name, with_env=True, env_text=""):
        return _make_site(sites_root, name, with_env, env_text)

    return factory


@pytest.fixture
def registry(sites_root):
    return SiteRegistry(
        MultisitePaths(sites_path=str(sites_root), base_path="app", public_path="public")
    )
