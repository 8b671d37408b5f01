"""
Shared pytest fixtures for Caffeinate Agent tests.

No real helper processes are spawned: FakePopen hands out FakeProcess objects
whose wait() blocks until terminate(), kill() or crash() is called, so the
supervisor's exit-watcher thread behaves as it would with a real child.
"""

import os
import subprocess
import threading
import time

import pytest

from caffeinate_agent.core.platform import resolve_inhibition_method
from caffeinate_agent.core.supervisor import ProcessSupervisor


class FakeProcess:
    """Stand-in for subprocess.Popen that stays alive until told otherwise."""

    def __init__(self, argv, pid, ignore_terminate=False):
        self.args = argv
        self.pid = pid
        self.returncode = None
        self.ignore_terminate = ignore_terminate
        self.calls = []
        self._exited = threading.Event()

    def _finish(self, code):
        if self.returncode is None:
            self.returncode = code
        self._exited.set()

    def wait(self, timeout=None):
        if not self._exited.wait(timeout):
            raise subprocess.TimeoutExpired(self.args, timeout)
        return self.returncode

    def poll(self):
        return self.returncode

    def terminate(self):
        self.calls.append("terminate")
        if not self.ignore_terminate:
            self._finish(-15)

    def kill(self):
        self.calls.append("kill")
        self._finish(-9)

    def send_signal(self, sig):
        self.calls.append(("signal", sig))

    def crash(self, code=1):
        """Simulate the helper dying on its own."""
        self._finish(code)

    @property
    def alive(self):
        return not self._exited.is_set()


class FakePopen:
    """Callable replacing subprocess.Popen; records every spawn."""

    def __init__(self):
        self.spawned = []
        self.kwargs = []
        self.error = None
        self.ignore_terminate = False
        self._next_pid = 4000

    def __call__(self, argv, **kwargs):
        if self.error is not None:
            raise self.error
        self._next_pid += 1
        process = FakeProcess(list(argv), self._next_pid, self.ignore_terminate)
        self.spawned.append(process)
        self.kwargs.append(kwargs)
        return process

    @property
    def live_count(self):
        return sum(1 for p in self.spawned if p.alive)

    @property
    def terminate_calls(self):
        return sum(p.calls.count("terminate") for p in self.spawned)


def wait_for(predicate, timeout=2.0):
    """Poll until predicate() is true; watcher threads run asynchronously."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


@pytest.fixture
def fake_popen():
    return FakePopen()


@pytest.fixture
def supervisor(fake_popen):
    return ProcessSupervisor(popen=fake_popen, stop_timeout=0.2, system="Linux")


@pytest.fixture
def linux_spec():
    return resolve_inhibition_method("Linux", who="tests", why="testing")


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep the developer's CAFFEINATE_* / ZULIP_* settings out of tests."""
    for name in list(os.environ):
        if name.startswith(("CAFFEINATE_", "ZULIP_")):
            monkeypatch.delenv(name, raising=False)
