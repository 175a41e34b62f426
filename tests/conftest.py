"""Shared fixtures for jvmprof tests."""

import pytest

from fakes import FakeClock, FakeRunner
from jvmprof.models import ControllerState, Session, TargetProcess, ToolInstallation


@pytest.fixture
def target() -> TargetProcess:
    return TargetProcess(pid=4821, display_name="com.example.MainApp", command_line="java com.example.MainApp")


@pytest.fixture
def installation(tmp_path) -> ToolInstallation:
    return ToolInstallation(
        platform="linux-x64",
        version="4.1",
        install_dir=tmp_path / "profiler",
        source_url="https://example.invalid/async-profiler.tar.gz",
        verified=True,
    )


@pytest.fixture
def session(tmp_path, target, installation) -> Session:
    return Session(
        installation=installation,
        results_dir=tmp_path / "results",
        target=target,
        state=ControllerState.EXECUTING_ACTION,
    )


@pytest.fixture
def runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
