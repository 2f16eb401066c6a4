import os
import signal
import sys
from collections.abc import Generator
from pathlib import Path
from typing import Callable, List, Optional

import pytest

from bulk_ab_av1 import core


@pytest.fixture(autouse=True)
def restore_std_streams() -> Generator[None, None, None]:
    original_stdout = sys.stdout
    original_stderr = sys.stderr
    try:
        yield
    finally:
        sys.stdout = original_stdout
        sys.stderr = original_stderr


@pytest.fixture(autouse=True)
def restore_sigint_handler() -> Generator[None, None, None]:
    original = signal.getsignal(signal.SIGINT)
    try:
        yield
    finally:
        signal.signal(signal.SIGINT, original)
        core.CancellationScope._active = None


@pytest.fixture
def temp_cwd(tmp_path: Path) -> Generator[Path, None, None]:
    previous = Path.cwd()
    os.chdir(tmp_path)
    try:
        yield tmp_path
    finally:
        os.chdir(previous)


class FakeProcess:
    """Stands in for subprocess.Popen; ``on_wait`` runs while the child is "running"."""

    def __init__(self, cmd: List[str], return_code: int = 0, on_wait: Optional[Callable[[], None]] = None) -> None:
        self.cmd = cmd
        self.returncode: Optional[int] = None
        self.terminated = False
        self.killed = False
        self._return_code = return_code
        self._on_wait = on_wait

    def poll(self) -> Optional[int]:
        return self.returncode

    def wait(self, timeout: Optional[float] = None) -> int:
        if self.returncode is None and self._on_wait is not None:
            callback, self._on_wait = self._on_wait, None
            callback()
        if self.returncode is None:
            self.returncode = self._return_code
        return self.returncode

    def terminate(self) -> None:
        self.terminated = True
        self.returncode = -signal.SIGTERM

    def kill(self) -> None:
        self.killed = True
        self.returncode = -signal.SIGKILL


class FakePopenFactory:
    def __init__(self) -> None:
        self.processes: List[FakeProcess] = []
        self.return_codes: List[int] = []
        self.on_wait: Optional[Callable[[], None]] = None
        self.launch_error: Optional[OSError] = None
        self.on_spawn: Optional[Callable[[], None]] = None

    def __call__(self, cmd: List[str], *args, **kwargs) -> FakeProcess:
        if self.launch_error is not None:
            raise self.launch_error
        if self.on_spawn is not None:
            self.on_spawn()
        return_code = self.return_codes.pop(0) if self.return_codes else 0
        process = FakeProcess(list(cmd), return_code=return_code, on_wait=self.on_wait)
        self.processes.append(process)
        return process

    @property
    def commands(self) -> List[List[str]]:
        return [process.cmd for process in self.processes]


@pytest.fixture
def fake_popen(monkeypatch: pytest.MonkeyPatch) -> FakePopenFactory:
    factory = FakePopenFactory()
    monkeypatch.setattr(core.subprocess, "Popen", factory)
    return factory


@pytest.fixture
def send_sigint() -> Callable[[], None]:
    def _send() -> None:
        handler = signal.getsignal(signal.SIGINT)
        assert callable(handler)
        handler(signal.SIGINT, None)

    return _send
