"""Shared fixtures for mlsim tests."""

import textwrap

import pytest

from mlsim.host import HeadlessHost, ManualClock, TimingMode
from mlsim.logsink import LogSink
from mlsim.paths import PathResolver
from mlsim.scheduler import Scheduler


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def host(clock):
    return HeadlessHost(clock)


@pytest.fixture
def log():
    return LogSink()


@pytest.fixture
def write_script(tmp_path):
    def _write(name, body):
        path = tmp_path / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(textwrap.dedent(body).lstrip("\n"), encoding="utf-8")
        return path

    return _write


@pytest.fixture
def make_scheduler(host, clock, log, tmp_path, monkeypatch):
    """Scheduler factory; runs from tmp_path because loading a script changes directory."""
    monkeypatch.chdir(tmp_path)
    created = []

    def _make(**kwargs):
        kwargs.setdefault("update_rate", 0)
        kwargs.setdefault("render_rate", 0)
        kwargs.setdefault("timing", TimingMode.TIMER)
        kwargs.setdefault("resolver", PathResolver(log=log))
        scheduler = Scheduler(host, clock=clock, log=log, **kwargs)
        created.append(scheduler)
        return scheduler

    yield _make
    for scheduler in created:
        scheduler.shutdown()
