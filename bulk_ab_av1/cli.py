from __future__ import annotations

import json
import logging
import os
import shlex
import sys
from pathlib import Path
from typing import Optional

from .core import DEFAULT_EXECUTABLE, EXECUTABLE_ENV_VAR, BatchConfig, check_executable, process_entries, read_file_list
from .options import LOG_LEVEL_CHOICES, ParsedOptions, parse_cli_args

DEFAULT_LOG_LEVEL = logging.INFO
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"
LOG_LEVELS = {name: getattr(logging, name.upper()) for name in LOG_LEVEL_CHOICES}


def _optional_path(options: ParsedOptions, key: str) -> Optional[Path]:
    value = options.get(key)
    return Path(str(value)).expanduser() if value is not None else None


def build_config(options: ParsedOptions, ab_av1_args: list[str]) -> BatchConfig:
    return BatchConfig(
        file_list=Path(str(options["file_list"])).expanduser(),
        ab_av1_args=list(ab_av1_args),
        dry=bool(options.get("dry", False)),
        output_dir=_optional_path(options, "output_dir"),
        rel_dir=_optional_path(options, "rel_dir"),
        executable=os.getenv(EXECUTABLE_ENV_VAR, DEFAULT_EXECUTABLE),
    )


def main(argv: Optional[list[str]] = None) -> int:
    if argv is None:
        argv = sys.argv[1:]
    options, ab_av1_args = parse_cli_args(argv)

    log_level = LOG_LEVELS.get(str(options.get("log_level", "info")), DEFAULT_LOG_LEVEL)
    logging.basicConfig(format=LOG_FORMAT, level=log_level)

    logging.info("options: %s", json.dumps(options, sort_keys=True))
    logging.info("ab-av1 arguments: %s", shlex.join(ab_av1_args))

    config = build_config(options, ab_av1_args)
    if not config.dry:
        check_executable(config.executable)

    try:
        entries = read_file_list(config.file_list)
    except (OSError, UnicodeDecodeError) as exc:
        logging.error("Unable to read file list %s: %s", config.file_list, exc)
        return 1

    process_entries(config, entries)
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
