from __future__ import annotations

import enum
import logging
import os
import re
import shlex
import shutil
import signal
import subprocess
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Optional

DEFAULT_EXECUTABLE = "ab-av1"
EXECUTABLE_ENV_VAR = "AB_AV1_BIN"
OUTPUT_MARKER = ".av1"
ALREADY_AV1_PATTERN = re.compile(r"\.av1\..+$")
# ab-av1 sub-commands that never write an output file.
NO_OUTPUT_COMMANDS = frozenset({"sample-encode", "vmaf", "crf-search"})
TERMINATE_GRACE_SECONDS = 10.0
DIVIDER = "=" * 26
ABORT_MESSAGE = "Parent process captured SIGINT -- aborting child process and exiting bulk-ab-av1"


class AbAv1Error(RuntimeError):
    """A single ab-av1 invocation failed to launch or exited unsuccessfully."""


class ItemOutcome(enum.Enum):
    SKIPPED_ALREADY_AV1 = "skipped (already av1)"
    SKIPPED_OUTPUT_EXISTS = "skipped (output exists)"
    DRY_RUN = "dry run"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(slots=True)
class BatchConfig:
    file_list: Path
    ab_av1_args: List[str]
    dry: bool = False
    output_dir: Optional[Path] = None
    rel_dir: Optional[Path] = None
    executable: str = DEFAULT_EXECUTABLE

    @property
    def command(self) -> str:
        return self.ab_av1_args[0]


@dataclass(slots=True)
class WorkItem:
    source: str
    resolved: Path
    directory: Path
    extension: str
    output_path: Path


@dataclass(slots=True)
class BatchSummary:
    counts: Counter = field(default_factory=Counter)

    def record(self, outcome: ItemOutcome) -> None:
        self.counts[outcome] += 1

    @property
    def total(self) -> int:
        return sum(self.counts.values())

    @property
    def failed(self) -> int:
        return self.counts[ItemOutcome.FAILED]

    def describe(self) -> str:
        parts = [f"{self.counts[outcome]} {outcome.value}" for outcome in ItemOutcome if self.counts[outcome]]
        return f"Processed {self.total} file(s)" + (": " + ", ".join(parts) if parts else "")


def check_executable(executable: str) -> bool:
    if shutil.which(executable) is None:
        logging.warning("%s not found in PATH; every spawn is expected to fail.", executable)
        return False
    return True


def read_file_list(path: Path) -> List[str]:
    text = Path(path).read_text(encoding="utf-8")
    return [line for line in re.split(r"\r?\n", text) if line]


def is_already_av1(entry: str) -> bool:
    return ALREADY_AV1_PATTERN.search(entry) is not None


def output_filename(path: Path) -> str:
    return f"{path.stem}{OUTPUT_MARKER}{path.suffix}"


def build_work_item(entry: str, output_dir: Optional[Path] = None, rel_dir: Optional[Path] = None) -> WorkItem:
    resolved = Path(entry).resolve()
    directory = resolved.parent
    filename = output_filename(resolved)

    if output_dir is not None:
        if rel_dir is None:
            raise ValueError("rel_dir is required when output_dir is set")
        relative = os.path.relpath(directory, Path(rel_dir).resolve())
        output_path = Path(os.path.normpath(os.path.join(Path(output_dir).resolve(), relative, filename)))
    else:
        output_path = directory / filename

    return WorkItem(
        source=entry,
        resolved=resolved,
        directory=directory,
        extension=resolved.suffix,
        output_path=output_path,
    )


def wants_output_flag(config: BatchConfig) -> bool:
    if config.command in NO_OUTPUT_COMMANDS:
        return False
    # ab-av1 picks its own default destination when no output dir was requested
    return config.output_dir is not None


def build_ab_av1_args(config: BatchConfig, item: WorkItem) -> List[str]:
    args = list(config.ab_av1_args)
    args.extend(["-i", str(item.resolved)])
    args.extend(["--temp-dir", str(item.directory)])
    if wants_output_flag(config):
        args.extend(["-o", str(item.output_path)])
    elif config.command in NO_OUTPUT_COMMANDS:
        logging.debug('Not adding "-o" to ab-av1 args since command is %s', config.command)
    return args
class _Interrupted(BaseException):
    """Unwinds out of the child wait once SIGINT has been received."""


class CancellationScope:
    """Owns the SIGINT handler for the lifetime of one child process.

    The handler itself only records the interrupt and unwinds out of the
    blocking wait; terminating and reaping the child happens in ``__exit__``,
    after which the previous handler is restored and the program exits with
    status 1. A second interrupt while the child is being terminated kills it.
    Only one scope may be active at a time.
    """

    _active: Optional["CancellationScope"] = None

    def __init__(self, grace_seconds: float = TERMINATE_GRACE_SECONDS) -> None:
        self.grace_seconds = grace_seconds
        self.cancelled = False
        self._process: Optional[subprocess.Popen] = None
        self._previous_handler = None

    def __enter__(self) -> "CancellationScope":
        if CancellationScope._active is not None:
            raise RuntimeError("A cancellation scope is already active; nested child processes are not allowed.")
        previous = signal.getsignal(signal.SIGINT)
        signal.signal(signal.SIGINT, self._handle_sigint)
        self._previous_handler = signal.SIG_DFL if previous is None else previous
        CancellationScope._active = self
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        try:
            if self.cancelled:
                self.terminate_child()
                logging.error(ABORT_MESSAGE)
                raise SystemExit(1) from None
        finally:
            signal.signal(signal.SIGINT, self._previous_handler)
            CancellationScope._active = None
            self._process = None

    def attach(self, process: subprocess.Popen) -> None:
        self._process = process
        # an interrupt that arrived while spawning is acted on now
        if self.cancelled:
            raise _Interrupted()

    def terminate_child(self) -> None:
        process = self._process
        if process is None or process.poll() is not None:
            return
        process.terminate()
        try:
            process.wait(timeout=self.grace_seconds)
        except subprocess.TimeoutExpired:
            logging.warning("Child process still running %.0fs after SIGTERM; killing it.", self.grace_seconds)
            process.kill()
            process.wait()

    def _handle_sigint(self, signum, frame) -> None:  # noqa: ARG002
        if self.cancelled:
            if self._process is not None:
                self._process.kill()
            return
        logging.warning("ABORTING")
        self.cancelled = True
        if self._process is not None:
            raise _Interrupted()


def _describe_signal(signum: int) -> str:
    try:
        return signal.Signals(signum).name
    except ValueError:
        return str(signum)


def run_ab_av1(executable: str, args: List[str]) -> None:
    cmd = [executable, *args]
    with CancellationScope() as scope:
        try:
            process = subprocess.Popen(cmd)
        except OSError as exc:
            raise AbAv1Error(f"Unable to launch {executable}: {exc}") from exc
        scope.attach(process)
        return_code = process.wait()

    if return_code < 0:
        raise AbAv1Error(f"Process exited with signal {_describe_signal(-return_code)}")
    if return_code != 0:
        raise AbAv1Error(f"Process exited with code {return_code}")


def process_item(config: BatchConfig, entry: str) -> ItemOutcome:
    if is_already_av1(entry):
        logging.info("%s is already an AV1 file (based on filename)", entry)
        return ItemOutcome.SKIPPED_ALREADY_AV1

    try:
        item = build_work_item(entry, config.output_dir, config.rel_dir)
        if item.output_path.exists():
            logging.info("%s output file already exists -- %s", item.resolved, item.output_path)
            return ItemOutcome.SKIPPED_OUTPUT_EXISTS

        args = build_ab_av1_args(config, item)
        if config.dry:
            logging.info("DRY Spawning %s %s", config.executable, shlex.join(args))
            return ItemOutcome.DRY_RUN

        if wants_output_flag(config):
            item.output_path.parent.mkdir(parents=True, exist_ok=True)
        logging.info("Spawning %s %s", config.executable, shlex.join(args))
        run_ab_av1(config.executable, args)
    except (AbAv1Error, OSError, ValueError, RuntimeError) as exc:
        logging.error("Failed to process %s: %s", entry, exc)
        return ItemOutcome.FAILED

    logging.info("Finished: %s", item.resolved)
    return ItemOutcome.SUCCEEDED


def process_entries(config: BatchConfig, entries: Iterable[str]) -> BatchSummary:
    summary = BatchSummary()
    for entry in entries:
        logging.info(DIVIDER)
        summary.record(process_item(config, entry))
    logging.info(DIVIDER)
    logging.info("%s.", summary.describe())
    if summary.failed:
        logging.warning("%d file(s) failed; see the errors above.", summary.failed)
    return summary
