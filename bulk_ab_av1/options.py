from __future__ import annotations

import sys
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple, Union

PROG_NAME = "bulk-ab-av1"
LOG_LEVEL_CHOICES = ("debug", "info", "warning", "error", "critical")
USAGE_LINE = f"Usage: {PROG_NAME} [options] <ab-av1 command> [ab-av1 options]"

OptionValue = Union[str, bool]
ParsedOptions = Dict[str, OptionValue]


class OptionValidationError(ValueError):
    """Raised when the parsed command line breaks the option schema."""


@dataclass(frozen=True, slots=True)
class OptionDefinition:
    name: str
    description: str
    alias: Optional[str] = None
    is_boolean: bool = False
    required: bool = False
    dependencies: Tuple[str, ...] = ()
    choices: Tuple[str, ...] = ()

    @property
    def key(self) -> str:
        return option_key(self.name)


def option_key(name: str) -> str:
    """Normalize a hyphenated option name to the identifier used in ParsedOptions."""
    parts = [part for part in name.split("-") if part]
    return "_".join(parts)


PROGRAM_OPTIONS: Tuple[OptionDefinition, ...] = (
    OptionDefinition(
        name="dry",
        is_boolean=True,
        description="Does not call ab-av1, just logs",
    ),
    OptionDefinition(
        name="file-list",
        alias="l",
        required=True,
        description="Path to a file with line-separated filepaths of videos to process",
    ),
    OptionDefinition(
        name="output-dir",
        alias="od",
        dependencies=("rel-dir",),
        description=(
            "Output directory for files. If omitted, then generated files are created "
            'in their original directory with "file.av1.ext"'
        ),
    ),
    OptionDefinition(
        name="rel-dir",
        alias="rd",
        dependencies=("output-dir",),
        description=(
            "Relative directory. Determines an output file's directory structure "
            "relative from rel-dir to the input file's directory"
        ),
    ),
    OptionDefinition(
        name="log-level",
        choices=LOG_LEVEL_CHOICES,
        description="Logging verbosity (default: info)",
    ),
)


def check_schema(definitions: Sequence[OptionDefinition]) -> None:
    declared = {defn.name for defn in definitions}
    for defn in definitions:
        unknown = [dep for dep in defn.dependencies if dep not in declared]
        if unknown:
            raise ValueError(f"Option --{defn.name} depends on undeclared options: {', '.join(unknown)}")


def _find_option(token: str, definitions: Sequence[OptionDefinition]) -> Optional[OptionDefinition]:
    if token.startswith("--"):
        name = token[2:]
        return next((defn for defn in definitions if defn.name == name), None)
    alias = token[1:]
    return next((defn for defn in definitions if defn.alias is not None and defn.alias == alias), None)


def tokenize(
    argv: Sequence[str],
    definitions: Sequence[OptionDefinition] = PROGRAM_OPTIONS,
) -> Tuple[ParsedOptions, List[str]]:
    """Split raw tokens into recognized options and positional arguments.

    Unrecognized option tokens are forwarded as positionals together with the
    token that follows them, so options meant for ab-av1 (``--preset 8``) pass
    through untouched.
    """
    parsed: ParsedOptions = {}
    positional: List[str] = []
    i = 0
    while i < len(argv):
        token = argv[i]
        if not token.startswith("-"):
            positional.append(token)
            i += 1
            continue

        defn = _find_option(token, definitions)
        if defn is None:
            positional.extend(argv[i : i + 2])
            i += 2
        elif defn.is_boolean:
            parsed[defn.key] = True
            i += 1
        else:
            if i + 1 < len(argv):
                parsed[defn.key] = argv[i + 1]
            i += 2
    return parsed, positional


def validate(
    parsed: ParsedOptions,
    positional: Sequence[str],
    definitions: Sequence[OptionDefinition] = PROGRAM_OPTIONS,
) -> None:
    check_schema(definitions)

    for defn in definitions:
        if defn.required and parsed.get(defn.key) is None:
            raise OptionValidationError(f"Missing required option --{defn.name}")

    for defn in definitions:
        if parsed.get(defn.key) is None or not defn.dependencies:
            continue
        missing = [dep for dep in defn.dependencies if parsed.get(option_key(dep)) is None]
        if missing:
            raise OptionValidationError(
                f"Option --{defn.name} was provided, but is missing dependent options: {', '.join(missing)}"
            )

    for defn in definitions:
        value = parsed.get(defn.key)
        if defn.choices and value is not None and value not in defn.choices:
            raise OptionValidationError(
                f"Invalid value '{value}' for --{defn.name}; choose one of: {', '.join(defn.choices)}"
            )

    if not positional:
        raise OptionValidationError("An ab-av1 command is required")


def format_help(definitions: Sequence[OptionDefinition] = PROGRAM_OPTIONS, usage: str = USAGE_LINE) -> str:
    lines = [usage]
    for defn in definitions:
        opening, closing = ("<", ">") if defn.required else ("[", "]")
        flag = f"--{defn.name}"
        if defn.alias:
            flag = f"-{defn.alias},{flag}"
        lines.append(f"    {opening}{flag}{closing}  {defn.description}")
        if defn.choices:
            lines.append(f"        Choices: {', '.join(defn.choices)}")
        if defn.dependencies:
            lines.append(f"        Dependent options: {', '.join(defn.dependencies)}")
    return "\n".join(lines) + "\n"


def parse_cli_args(
    argv: Sequence[str],
    definitions: Sequence[OptionDefinition] = PROGRAM_OPTIONS,
) -> Tuple[ParsedOptions, List[str]]:
    """Tokenize and validate, exiting with status 1 and the usage block on failure."""
    parsed, positional = tokenize(argv, definitions)
    try:
        validate(parsed, positional, definitions)
    except OptionValidationError as exc:
        sys.stderr.write(f"{exc}\n")
        sys.stderr.write(format_help(definitions))
        sys.stderr.flush()
        raise SystemExit(1) from None
    return parsed, positional
