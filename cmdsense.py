#!/usr/bin/env -S uv run --script
# /// script
# requires-python = ">=3.11"
# dependencies = []
# ///
"""cmdsense - Terminal command intelligence.

Turns partial shell input into ranked completion suggestions, learns unknown
commands by parsing their live `--help` output, keeps searchable command and
directory history, and proposes quick fixes for failed commands.

The engine is a library: a terminal front end constructs a `SuggestionEngine`,
feeds it the current input line, and supplies the I/O collaborators (command
runner, directory fetcher, key-value store). Defaults for all three are
provided for local use and for the command-line probe below.

Storage model:
- Persisted history and recent directories live in `~/.config/cmdsense/store.json`.
- `CMDSENSE_HOME` environment variable overrides the storage location.
- `config.json` in the same directory holds settings; `CMDSENSE_<KEY>`
  environment variables override it.

Usage:
    cmdsense suggest "git remote a"              # Rank completions for an input line
    cmdsense suggest "pip install " --auto       # Contextual suggestions after a space
    cmdsense parse-help rsync                    # Show what `rsync --help` parses into
    cmdsense history search "dock"               # Fuzzy search history
    cmdsense fix --command "python app.py" < out # Quick fixes for captured output
"""

from __future__ import annotations

import argparse
import asyncio
import enum
import functools
import json
import os
import re
import stat
import sys
import time
from collections import deque
from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from pathlib import Path
from types import MappingProxyType
from typing import Final, Protocol, TypedDict, TypeVar

# Constants
MAX_HISTORY_SIZE: Final[int] = 500
MAX_RECENT_DIRS: Final[int] = 50
PATH_CACHE_TTL_S: Final[float] = 300.0
DEBOUNCE_S: Final[float] = 0.1

COMMAND_SUGGESTION_LIMIT: Final[int] = 20
HISTORY_COMMAND_LIMIT: Final[int] = 5
FLAG_SUGGESTION_LIMIT: Final[int] = 15
CONTEXTUAL_SUGGESTION_LIMIT: Final[int] = 20
CONTEXTUAL_PATH_LIMIT: Final[int] = 10
PATH_SUGGESTION_LIMIT: Final[int] = 25
HISTORY_SEARCH_LIMIT: Final[int] = 20
DIRECTORY_SEARCH_LIMIT: Final[int] = 15

DYNAMIC_DESCRIPTION: Final[str] = "Dynamically parsed command"

HISTORY_STORE_KEY: Final[str] = "commandHistory"
RECENT_DIRS_STORE_KEY: Final[str] = "recentDirectories"


def cmdsense_home() -> Path:
    """Return cmdsense's home directory.

    Defaults to `~/.config/cmdsense`, overridable via `CMDSENSE_HOME`.
    """
    raw = os.environ.get("CMDSENSE_HOME")
    if raw:
        return Path(raw).expanduser()
    return Path.home() / ".config" / "cmdsense"


def cmdsense_config_path() -> Path:
    return cmdsense_home() / "config.json"


def cmdsense_store_path() -> Path:
    return cmdsense_home() / "store.json"


def _load_config() -> dict:
    path = cmdsense_config_path()
    if not path.exists():
        return {}
    try:
        payload = json.loads(path.read_text())
    except (json.JSONDecodeError, OSError):
        return {}
    if isinstance(payload, dict):
        return payload
    return {}


def _config_get(*, key: str) -> object | None:
    # Environment variables override config.json for quick experimentation.
    # Example: `CMDSENSE_DEBOUNCE_MS=250`, `CMDSENSE_VERBOSE=2`.
    env_key = f"CMDSENSE_{key.upper()}"
    env_val = os.environ.get(env_key)
    if env_val is not None and env_val.strip() != "":
        return env_val
    return _load_config().get(key)


def _setting_int(*, config_key: str, default: int) -> int:
    cfg = _config_get(key=config_key)
    if cfg is None:
        return default
    try:
        return int(cfg)
    except (TypeError, ValueError):
        return default


def _setting_float(*, config_key: str, default: float) -> float:
    cfg = _config_get(key=config_key)
    if cfg is None:
        return default
    try:
        return float(cfg)
    except (TypeError, ValueError):
        return default


@functools.cache
def _verbose_level() -> int:
    """Resolved once per process; `_verbose_level.cache_clear()` re-reads it."""
    raw = _config_get(key="verbose")
    if raw is None:
        return 0
    if isinstance(raw, bool):
        return 1 if raw else 0
    if isinstance(raw, int):
        if raw <= 0:
            return 0
        return 2 if raw > 1 else 1
    if isinstance(raw, str):
        value = raw.strip().lower()
        if value in {"", "0", "false", "no", "off"}:
            return 0
        if value in {"1", "true", "yes", "on", "basic"}:
            return 1
        return 2
    return 0


def _debug(message: str, *, level: int = 1) -> None:
    if _verbose_level() >= level:
        print(f"[cmdsense] {message}", file=sys.stderr)


def _debounce_seconds() -> float:
    millis = _setting_int(config_key="debounce_ms", default=int(DEBOUNCE_S * 1000))
    return max(0.0, millis / 1000)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(microsecond=0)


class ArgKind(enum.Enum):
    """What a command's positional arguments are."""

    NONE = "none"
    FILE = "file"
    DIRECTORY = "directory"
    PATH = "path"


class SuggestionType(enum.Enum):
    COMMAND = "command"
    SUBCOMMAND = "subcommand"
    FLAG = "flag"
    HISTORY = "history"
    DIRECTORY = "directory"
    FILE = "file"
    CODE_FILE = "code_file"
    CONFIG_FILE = "config_file"
    DOCUMENT = "document"
    IMAGE = "image"
    ARCHIVE = "archive"
    SCRIPT = "script"
    EXECUTABLE = "executable"


SUGGESTION_LABELS: Final[dict[SuggestionType, str]] = {
    SuggestionType.COMMAND: "[cmd]",
    SuggestionType.SUBCOMMAND: "[sub]",
    SuggestionType.FLAG: "[flag]",
    SuggestionType.HISTORY: "[hist]",
    SuggestionType.DIRECTORY: "[dir]",
    SuggestionType.FILE: "[file]",
    SuggestionType.CODE_FILE: "[code]",
    SuggestionType.CONFIG_FILE: "[conf]",
    SuggestionType.DOCUMENT: "[doc]",
    SuggestionType.IMAGE: "[img]",
    SuggestionType.ARCHIVE: "[arch]",
    SuggestionType.SCRIPT: "[script]",
    SuggestionType.EXECUTABLE: "[exe]",
}


def suggestion_label(kind: SuggestionType) -> str:
    return SUGGESTION_LABELS[kind]


@dataclass(frozen=True, slots=True)
class FlagMetadata:
    """Metadata for a parsed flag; aliases share it with their own display name."""

    primary: str
    display_name: str
    description: str = ""
    expects_value: bool = False

    def with_display_name(self, display_name: str) -> FlagMetadata:
        return replace(self, display_name=display_name)


@dataclass(frozen=True, slots=True)
class ParsedHelpCommand:
    name: str
    description: str = ""


@dataclass(frozen=True, slots=True)
class ParsedHelpFlag:
    name: str  # e.g., "--config"; the long form when one exists
    alias: str | None = None  # e.g., "-c"
    description: str = ""
    expects_value: bool = False


@dataclass(frozen=True, slots=True)
class ParsedHelpDocument:
    """Structured result of parsing one `--help` page."""

    description: str | None = None
    subcommands: tuple[ParsedHelpCommand, ...] = ()
    flags: tuple[ParsedHelpFlag, ...] = ()

    @property
    def has_content(self) -> bool:
        return bool(self.subcommands) or bool(self.flags)

    def to_dict(self) -> dict:
        return {
            "description": self.description,
            "subcommands": [
                {"name": cmd.name, "description": cmd.description}
                for cmd in self.subcommands
            ],
            "flags": [
                {
                    "name": flag.name,
                    "alias": flag.alias,
                    "description": flag.description,
                    "expects_value": flag.expects_value,
                }
                for flag in self.flags
            ],
        }


@dataclass(frozen=True, slots=True)
class CommandInfo:
    """Everything known about one command or subcommand path."""

    description: str = ""
    flags: tuple[str, ...] = ()
    subcommands: Mapping[str, str] = field(default_factory=dict)
    arg_kind: ArgKind = ArgKind.NONE
    flag_metadata: Mapping[str, FlagMetadata] = field(default_factory=dict)

    def __post_init__(self) -> None:
        # Static entries are shared by every catalog in the process.
        object.__setattr__(self, "subcommands", MappingProxyType(dict(self.subcommands)))
        object.__setattr__(self, "flag_metadata", MappingProxyType(dict(self.flag_metadata)))

    @property
    def has_content(self) -> bool:
        return bool(self.flags) or bool(self.subcommands)

    @classmethod
    def from_parsed_help(cls, doc: ParsedHelpDocument) -> CommandInfo:
        subcommands = {cmd.name: cmd.description for cmd in doc.subcommands}

        flags: list[str] = []
        metadata: dict[str, FlagMetadata] = {}
        for flag in doc.flags:
            entry = FlagMetadata(
                primary=flag.name,
                display_name=flag.name,
                description=flag.description,
                expects_value=flag.expects_value,
            )
            if flag.name:
                flags.append(flag.name)
                metadata[flag.name] = entry
            if flag.alias:
                flags.append(flag.alias)
                metadata[flag.alias] = entry.with_display_name(flag.alias)

        return cls(
            description=doc.description or DYNAMIC_DESCRIPTION,
            flags=tuple(flags),
            subcommands=subcommands,
            flag_metadata=metadata,
        )


@dataclass(frozen=True, slots=True)
class Suggestion:
    """One completion candidate, created fresh per query."""

    text: str
    display_text: str
    description: str = ""
    type: SuggestionType = SuggestionType.FILE
    is_directory: bool = False
    full_path: str | None = None
    sort_key: str = ""
    requires_value: bool = False

    def __post_init__(self) -> None:
        if not self.sort_key:
            object.__setattr__(self, "sort_key", self.text)

    @property
    def is_command(self) -> bool:
        return self.type in (
            SuggestionType.COMMAND,
            SuggestionType.SUBCOMMAND,
            SuggestionType.HISTORY,
        )

    def with_sort_key(self, sort_key: str) -> Suggestion:
        return replace(self, sort_key=sort_key)


class HistoryRecord(TypedDict):
    command: str
    timestamp: str
    directory: str | None
    exitCode: int | None


@dataclass(frozen=True, slots=True)
class HistoryEntry:
    command: str
    timestamp: datetime
    directory: str | None = None
    exit_code: int | None = None

    @property
    def succeeded(self) -> bool:
        return self.exit_code is None or self.exit_code == 0

    def to_record(self) -> HistoryRecord:
        return {
            "command": self.command,
            "timestamp": self.timestamp.isoformat(),
            "directory": self.directory,
            "exitCode": self.exit_code,
        }

    @classmethod
    def from_record(cls, record: HistoryRecord) -> HistoryEntry:
        return cls(
            command=record["command"],
            timestamp=datetime.fromisoformat(record["timestamp"]),
            directory=record.get("directory"),
            exit_code=record.get("exitCode"),
        )


@dataclass(frozen=True, slots=True)
class QuickFixSuggestion:
    title: str
    command: str
    description: str


@dataclass(frozen=True, slots=True)
class DirectoryEntry:
    """A directory listing row, local or remote."""

    name: str
    is_directory: bool
    path: str
    size: int = 0
    permissions: str | None = None  # e.g., "-rwxr-xr-x"


@dataclass(frozen=True, slots=True)
class Resolution:
    """Outcome of walking input tokens against the catalog."""

    key: str
    info: CommandInfo | None
    depth: int


CommandRunner = Callable[[str], Awaitable[str]]
DirectoryFetcher = Callable[[str], Awaitable[Iterable["DirectoryEntry | Mapping"]]]
PathScanner = Callable[[], Iterable[str]]


class KeyValueStore(Protocol):
    async def get(self, key: str) -> object | None: ...

    async def put(self, key: str, value: object) -> None: ...


def validate_history_record(*, payload: object) -> HistoryRecord:
    if not isinstance(payload, dict):
        raise ValueError("history record must be an object")
    command = payload.get("command")
    if not isinstance(command, str) or not command.strip():
        raise ValueError("history command must be a non-empty string")
    timestamp = payload.get("timestamp")
    if not isinstance(timestamp, str) or not timestamp:
        raise ValueError("history timestamp must be a non-empty string")
    try:
        datetime.fromisoformat(timestamp)
    except ValueError as e:
        raise ValueError(f"history timestamp is not ISO-8601: {timestamp}") from e
    directory = payload.get("directory")
    if directory is not None and not isinstance(directory, str):
        raise ValueError("history directory must be a string or null")
    exit_code = payload.get("exitCode")
    if exit_code is not None and (
        not isinstance(exit_code, int) or isinstance(exit_code, bool)
    ):
        raise ValueError("history exitCode must be an integer or null")
    return {
        "command": command,
        "timestamp": timestamp,
        "directory": directory,
        "exitCode": exit_code,
    }


def validate_recent_directories(*, payload: object) -> list[str]:
    if not isinstance(payload, list):
        raise ValueError("recent directories must be a list")
    out: list[str] = []
    for item in payload:
        if not isinstance(item, str):
            raise ValueError("recent directories must be strings")
        if item:
            out.append(item)
    return out


def _entry_from_payload(payload: DirectoryEntry | Mapping) -> DirectoryEntry:
    if isinstance(payload, DirectoryEntry):
        return payload
    if not isinstance(payload, Mapping):
        raise ValueError("directory entry must be a DirectoryEntry or a mapping")
    name = payload.get("name")
    if not isinstance(name, str) or not name:
        raise ValueError("directory entry name must be a non-empty string")
    is_dir = payload.get("is_directory", payload.get("isDirectory", False))
    path = payload.get("path")
    permissions = payload.get("permissions")
    size = payload.get("size") or 0
    return DirectoryEntry(
        name=name,
        is_directory=bool(is_dir),
        path=path if isinstance(path, str) else name,
        size=size if isinstance(size, int) else 0,
        permissions=permissions if isinstance(permissions, str) else None,
    )


# Section headings recognized in help output. Exact matches first, then a
# loose substring match on the keywords below.
HELP_COMMAND_HEADERS: Final[frozenset[str]] = frozenset(
    {
        "commands",
        "subcommands",
        "available commands",
        "available subcommands",
        "common commands",
        "management commands",
    }
)
HELP_OPTION_HEADERS: Final[frozenset[str]] = frozenset(
    {
        "options",
        "flags",
        "arguments",
        "optional arguments",
        "global options",
        "available options",
    }
)
HELP_RESET_HEADERS: Final[frozenset[str]] = frozenset(
    {"usage", "examples", "description", "synopsis"}
)
HELP_COMMAND_KEYWORDS: Final[tuple[str, ...]] = ("command",)
HELP_OPTION_KEYWORDS: Final[tuple[str, ...]] = ("option", "flag", "argument")
HELP_RESET_KEYWORDS: Final[tuple[str, ...]] = (
    "usage",
    "description",
    "synopsis",
    "example",
)

_SECTION_NONE: Final[str] = "none"
_SECTION_COMMANDS: Final[str] = "commands"
_SECTION_OPTIONS: Final[str] = "options"

_COMMAND_LINE_RE: Final[re.Pattern[str]] = re.compile(
    r"^\s*([A-Za-z0-9:_-]+(?:\s+[A-Za-z0-9:_-]+)*)\s{2,}(.+)$"
)
_FLAG_LINE_RE: Final[re.Pattern[str]] = re.compile(
    r"^\s*(-{1,2}[^\s,]+(?:\s+[^\s,]+)?(?:,\s*-{1,2}[^\s,]+(?:\s+[^\s,]+)?)*)\s{2,}(.+)$"
)
_CONTINUATION_RE: Final[re.Pattern[str]] = re.compile(r"^\s{2,}")
_VALUE_PLACEHOLDER_RE: Final[re.Pattern[str]] = re.compile(r"\s+[A-Z\[<]")


def _detect_section_header(trimmed: str) -> str | None:
    """Classify a `Heading:` line; None means "not a heading"."""
    if not trimmed.endswith(":") or trimmed.startswith("-"):
        return None
    header = trimmed[:-1].strip().lower()

    def matches(exact: frozenset[str], keywords: tuple[str, ...]) -> bool:
        return header in exact or any(keyword in header for keyword in keywords)

    if matches(HELP_COMMAND_HEADERS, HELP_COMMAND_KEYWORDS):
        return _SECTION_COMMANDS
    if matches(HELP_OPTION_HEADERS, HELP_OPTION_KEYWORDS):
        return _SECTION_OPTIONS
    if matches(HELP_RESET_HEADERS, HELP_RESET_KEYWORDS):
        return _SECTION_NONE
    return None


def _normalize_flag_token(fragment: str) -> str:
    value = fragment.strip()
    cuts = [idx for idx in (value.find(" "), value.find("=")) if idx >= 0]
    if cuts:
        value = value[: min(cuts)]
    value = re.sub(r"[<\[].*", "", value)
    return value.strip()


def _fragment_implies_value(fragment: str) -> bool:
    value = fragment.strip()
    return "=" in value or "<" in value or bool(_VALUE_PLACEHOLDER_RE.search(value))


@dataclass(slots=True)
class _HelpEntry:
    """A subcommand or flag row being accumulated across continuation lines."""

    tokens: list[str]
    expects_value: bool = False
    description_parts: list[str] = field(default_factory=list)

    def append(self, text: str) -> None:
        value = text.strip()
        if value:
            self.description_parts.append(value)

    @property
    def description(self) -> str:
        return " ".join(self.description_parts)

    def to_command(self) -> ParsedHelpCommand:
        return ParsedHelpCommand(name=self.tokens[0], description=self.description)

    def to_flag(self) -> ParsedHelpFlag:
        primary = next(
            (tok for tok in self.tokens if tok.startswith("--")), self.tokens[0]
        )
        alias = next((tok for tok in self.tokens if tok != primary), None)
        return ParsedHelpFlag(
            name=primary,
            alias=alias,
            description=self.description,
            expects_value=self.expects_value,
        )


def _parse_command_line(line: str) -> _HelpEntry | None:
    match = _COMMAND_LINE_RE.match(line)
    if match is None:
        return None
    name = match.group(1).strip()
    if name.startswith("-"):
        return None
    entry = _HelpEntry(tokens=[name])
    entry.append(match.group(2))
    return entry


def _parse_flag_line(line: str) -> _HelpEntry | None:
    match = _FLAG_LINE_RE.match(line.lstrip())
    if match is None:
        return None
    tokens: list[str] = []
    expects_value = False
    for fragment in match.group(1).split(","):
        if _fragment_implies_value(fragment):
            expects_value = True
        normalized = _normalize_flag_token(fragment)
        if normalized.startswith("-") and len(normalized) >= 2:
            tokens.append(normalized)
    if not tokens:
        return None
    entry = _HelpEntry(tokens=tokens, expects_value=expects_value)
    entry.append(match.group(2))
    return entry


def _extract_help_description(lines: list[str]) -> str | None:
    for raw_line in lines:
        trimmed = raw_line.strip()
        if not trimmed:
            continue
        if trimmed.lower().startswith("usage"):
            continue
        if trimmed.endswith(":") and _detect_section_header(trimmed) is not None:
            continue
        return trimmed
    return None


def parse_help_document(text: str) -> ParsedHelpDocument:
    """Parse raw `--help` output into subcommand and flag rows.

    Best effort: a line-oriented state machine driven by section headings.
    Text with no recognizable sections yields an empty document.
    """
    lines = text.replace("\r\n", "\n").split("\n")
    commands: list[_HelpEntry] = []
    flags: list[_HelpEntry] = []

    section = _SECTION_NONE
    last: _HelpEntry | None = None

    for raw_line in lines:
        line = raw_line.rstrip()
        trimmed = line.strip()
        if not trimmed:
            last = None
            continue

        next_section = _detect_section_header(trimmed)
        if next_section is not None:
            section = next_section
            last = None
            continue

        if section == _SECTION_COMMANDS:
            entry = _parse_command_line(line)
            if entry is not None:
                commands.append(entry)
                last = entry
            elif last is not None and _CONTINUATION_RE.match(line):
                last.append(trimmed)
        elif section == _SECTION_OPTIONS:
            entry = _parse_flag_line(line)
            if entry is not None:
                flags.append(entry)
                last = entry
            elif last is not None and _CONTINUATION_RE.match(line):
                last.append(trimmed)

    return ParsedHelpDocument(
        description=_extract_help_description(lines),
        subcommands=tuple(entry.to_command() for entry in commands),
        flags=tuple(entry.to_flag() for entry in flags),
    )


def parse_help(text: str) -> CommandInfo:
    """Parse help text into a CommandInfo; never raises."""
    doc = parse_help_document(text)
    if not doc.has_content:
        return CommandInfo(description=DYNAMIC_DESCRIPTION)
    return CommandInfo.from_parsed_help(doc)


def _info(
    description: str,
    flags: Iterable[str] = (),
    *,
    subcommands: Mapping[str, str] | None = None,
    arg_kind: ArgKind = ArgKind.NONE,
) -> CommandInfo:
    return CommandInfo(
        description=description,
        flags=tuple(flags),
        subcommands=dict(subcommands or {}),
        arg_kind=arg_kind,
    )


_PIP_SUBCOMMANDS: Final[dict[str, str]] = {
    "install": "Install packages",
    "uninstall": "Remove packages",
    "freeze": "Output installed packages",
    "list": "List installed packages",
    "show": "Show package info",
}
_PIP_FLAGS: Final[tuple[str, ...]] = (
    "-r", "--upgrade", "-U", "--user", "--no-cache-dir", "-e", "--target", "-t",
)
_PYTHON_FLAGS: Final[tuple[str, ...]] = (
    "-c", "-m", "-i", "-V", "--version", "-h", "--help", "-u", "-O", "-B",
)

KNOWN_COMMANDS: Final[dict[str, CommandInfo]] = {
    # File operations
    "ls": _info(
        "List directory contents",
        ["-l", "-a", "-la", "-lh", "-R", "-S", "-t", "-r", "--color", "--help"],
        arg_kind=ArgKind.PATH,
    ),
    "cd": _info("Change directory", arg_kind=ArgKind.DIRECTORY),
    "cat": _info(
        "Concatenate and display files",
        ["-n", "-b", "-s", "-E", "-T", "-v", "--help"],
        arg_kind=ArgKind.FILE,
    ),
    "cp": _info(
        "Copy files and directories",
        ["-r", "-R", "-i", "-f", "-v", "-n", "-p", "-a", "--help"],
        arg_kind=ArgKind.PATH,
    ),
    "mv": _info(
        "Move/rename files", ["-i", "-f", "-v", "-n", "--help"], arg_kind=ArgKind.PATH
    ),
    "rm": _info(
        "Remove files or directories",
        ["-r", "-R", "-f", "-i", "-v", "-d", "--help"],
        arg_kind=ArgKind.PATH,
    ),
    "mkdir": _info(
        "Create directories", ["-p", "-m", "-v", "--help"], arg_kind=ArgKind.PATH
    ),
    "touch": _info(
        "Create empty file or update timestamp",
        ["-a", "-m", "-c", "-t", "--help"],
        arg_kind=ArgKind.PATH,
    ),
    "chmod": _info(
        "Change file permissions", ["-R", "-v", "-c", "--help"], arg_kind=ArgKind.PATH
    ),
    "chown": _info(
        "Change file owner", ["-R", "-v", "-c", "-h", "--help"], arg_kind=ArgKind.PATH
    ),
    # Text processing
    "grep": _info(
        "Search text patterns",
        ["-i", "-v", "-r", "-R", "-n", "-l", "-c", "-E", "-w", "-A", "-B", "-C",
         "--color", "--help"],
        arg_kind=ArgKind.FILE,
    ),
    "find": _info(
        "Find files in directory tree",
        ["-name", "-type", "-size", "-mtime", "-exec", "-print", "-delete",
         "-maxdepth", "-mindepth"],
        arg_kind=ArgKind.DIRECTORY,
    ),
    "sed": _info(
        "Stream editor", ["-i", "-e", "-n", "-r", "-E", "--help"], arg_kind=ArgKind.FILE
    ),
    "awk": _info(
        "Pattern scanning and processing",
        ["-F", "-v", "-f", "--help"],
        arg_kind=ArgKind.FILE,
    ),
    "head": _info(
        "Output first part of files",
        ["-n", "-c", "-q", "-v", "--help"],
        arg_kind=ArgKind.FILE,
    ),
    "tail": _info(
        "Output last part of files",
        ["-n", "-c", "-f", "-F", "-q", "-v", "--help"],
        arg_kind=ArgKind.FILE,
    ),
    "sort": _info(
        "Sort lines of text",
        ["-r", "-n", "-k", "-t", "-u", "-f", "-o", "--help"],
        arg_kind=ArgKind.FILE,
    ),
    "uniq": _info(
        "Report or omit repeated lines",
        ["-c", "-d", "-u", "-i", "-f", "-s", "--help"],
        arg_kind=ArgKind.FILE,
    ),
    "wc": _info(
        "Word, line, character count",
        ["-l", "-w", "-c", "-m", "-L", "--help"],
        arg_kind=ArgKind.FILE,
    ),
    # Version control
    "git": _info(
        "Version control system",
        ["--version", "--help", "-C", "--git-dir", "--work-tree"],
        subcommands={
            "init": "Initialize a repository",
            "clone": "Clone a repository",
            "add": "Add files to staging",
            "commit": "Commit changes",
            "push": "Push to remote",
            "pull": "Pull from remote",
            "fetch": "Fetch from remote",
            "checkout": "Switch branches",
            "branch": "List/create branches",
            "merge": "Merge branches",
            "rebase": "Rebase commits",
            "status": "Show working tree status",
            "log": "Show commit log",
            "diff": "Show changes",
            "stash": "Stash changes",
            "reset": "Reset HEAD",
            "revert": "Revert commits",
            "tag": "Create tags",
            "remote": "Manage remotes",
            "config": "Get/set configuration",
        },
    ),
    # Package managers
    "npm": _info(
        "Node.js package manager",
        ["-g", "--save", "--save-dev", "-D", "--production", "--legacy-peer-deps"],
        subcommands={
            "install": "Install packages",
            "uninstall": "Remove packages",
            "update": "Update packages",
            "init": "Create package.json",
            "run": "Run scripts",
            "start": "Start application",
            "test": "Run tests",
            "build": "Build project",
            "publish": "Publish package",
            "ls": "List installed packages",
            "outdated": "Check for outdated packages",
            "audit": "Security audit",
            "cache": "Manage cache",
        },
    ),
    "pip": _info(
        "Python package manager",
        _PIP_FLAGS,
        subcommands={
            **_PIP_SUBCOMMANDS,
            "search": "Search packages",
            "download": "Download packages",
            "wheel": "Build wheels",
            "cache": "Manage cache",
            "config": "Manage configuration",
            "check": "Verify dependencies",
        },
    ),
    "pip3": _info("Python 3 package manager", _PIP_FLAGS, subcommands=_PIP_SUBCOMMANDS),
    # Containers
    "docker": _info(
        "Container platform",
        ["-d", "-it", "--rm", "-p", "-v", "-e", "--name", "--network", "-f"],
        subcommands={
            "run": "Run a container",
            "build": "Build image",
            "pull": "Pull image",
            "push": "Push image",
            "images": "List images",
            "ps": "List containers",
            "stop": "Stop containers",
            "start": "Start containers",
            "rm": "Remove containers",
            "rmi": "Remove images",
            "exec": "Execute command in container",
            "logs": "View logs",
            "compose": "Docker Compose",
            "network": "Manage networks",
            "volume": "Manage volumes",
        },
    ),
    # Network
    "ssh": _info(
        "Secure shell client",
        ["-p", "-i", "-L", "-R", "-D", "-N", "-f", "-v", "-X", "-Y", "-C", "-o", "-J"],
    ),
    "scp": _info(
        "Secure copy",
        ["-r", "-P", "-i", "-C", "-p", "-q", "-v", "-o"],
        arg_kind=ArgKind.PATH,
    ),
    "rsync": _info(
        "Remote sync",
        ["-a", "-v", "-z", "-r", "-P", "--progress", "--delete", "-n", "--dry-run",
         "-e", "--exclude"],
        arg_kind=ArgKind.PATH,
    ),
    "curl": _info(
        "Transfer data from URL",
        ["-X", "-H", "-d", "-o", "-O", "-L", "-f", "-s", "-S", "-k", "-v", "-I",
         "--data", "--header"],
    ),
    "wget": _info(
        "Download files",
        ["-O", "-q", "-c", "-r", "-P", "-N", "--no-check-certificate", "-b",
         "--limit-rate"],
    ),
    # Process management
    "ps": _info(
        "Report process status",
        ["aux", "-e", "-f", "-l", "-p", "--forest", "-u", "-x"],
    ),
    "kill": _info(
        "Terminate processes", ["-9", "-15", "-SIGTERM", "-SIGKILL", "-l", "-s"]
    ),
    "top": _info("Display system tasks", ["-d", "-u", "-p", "-n", "-b"]),
    "htop": _info("Interactive process viewer", ["-d", "-u", "-p", "-t", "-s"]),
    # System
    "sudo": _info("Execute as superuser", ["-s", "-i", "-u", "-E", "-k", "-K"]),
    "man": _info("Manual pages", ["-k", "-f", "-a", "-w"]),
    "which": _info("Locate a command", ["-a"]),
    "echo": _info("Display a line of text", ["-n", "-e", "-E"]),
    "export": _info("Set environment variable", ["-n", "-p"]),
    "env": _info("Display environment", ["-i", "-u", "-0"]),
    "history": _info("Command history", ["-c", "-d", "-a", "-n", "-r", "-w"]),
    "clear": _info("Clear terminal screen"),
    # Compression
    "tar": _info(
        "Archive utility",
        ["-c", "-x", "-t", "-z", "-j", "-J", "-v", "-f", "-C", "--exclude"],
        arg_kind=ArgKind.FILE,
    ),
    "zip": _info(
        "Package and compress files",
        ["-r", "-q", "-v", "-e", "-9", "-0"],
        arg_kind=ArgKind.PATH,
    ),
    "unzip": _info(
        "Extract zip archives", ["-l", "-t", "-o", "-d", "-q"], arg_kind=ArgKind.FILE
    ),
    "gzip": _info(
        "Compress files",
        ["-d", "-k", "-l", "-r", "-v", "-1", "-9"],
        arg_kind=ArgKind.FILE,
    ),
    "gunzip": _info(
        "Decompress files", ["-k", "-l", "-r", "-v"], arg_kind=ArgKind.FILE
    ),
    # Editors
    "vim": _info(
        "Vi Improved text editor",
        ["-R", "-O", "-o", "-p", "-d", "-u", "-N", "-c"],
        arg_kind=ArgKind.FILE,
    ),
    "nano": _info(
        "Simple text editor",
        ["-B", "-l", "-m", "-w", "-c", "-i"],
        arg_kind=ArgKind.FILE,
    ),
    "code": _info(
        "Visual Studio Code",
        ["-n", "-r", "-g", "-d", "--diff", "-w", "--wait", "-a", "--add",
         "--new-window"],
        arg_kind=ArgKind.PATH,
    ),
    # Interpreters
    "python": _info("Python interpreter", _PYTHON_FLAGS, arg_kind=ArgKind.FILE),
    "python3": _info("Python 3 interpreter", _PYTHON_FLAGS, arg_kind=ArgKind.FILE),
    "node": _info(
        "Node.js JavaScript runtime",
        ["-e", "-p", "-c", "-r", "-v", "--version", "-h", "--help", "--inspect"],
        arg_kind=ArgKind.FILE,
    ),
    "npx": _info(
        "Execute npm packages",
        ["-p", "-c", "-y", "-n", "--no-install", "--quiet"],
    ),
    # Toolchains
    "flutter": _info(
        "Flutter SDK",
        ["-d", "-v", "--verbose", "--version", "-h", "--help", "--release",
         "--debug", "--profile"],
        subcommands={
            "create": "Create new project",
            "run": "Run application",
            "build": "Build application",
            "test": "Run tests",
            "doctor": "Check installation",
            "pub": "Pub commands",
            "clean": "Clean build files",
            "analyze": "Analyze code",
            "format": "Format code",
            "upgrade": "Upgrade Flutter",
            "devices": "List devices",
            "install": "Install app on device",
            "attach": "Attach to running app",
            "logs": "Show device logs",
            "config": "Configure Flutter",
            "channel": "Switch channel",
            "gen-l10n": "Generate localizations",
        },
    ),
    "dart": _info(
        "Dart SDK",
        ["-h", "--help", "--version", "-v", "--verbose"],
        subcommands={
            "analyze": "Analyze code",
            "compile": "Compile Dart",
            "create": "Create project",
            "doc": "Generate documentation",
            "fix": "Apply fixes",
            "format": "Format code",
            "info": "Show info",
            "pub": "Pub commands",
            "run": "Run Dart program",
            "test": "Run tests",
        },
    ),
    "cargo": _info(
        "Rust package manager",
        ["--release", "--all", "-p", "--package", "-j", "--jobs", "-v", "--verbose"],
        subcommands={
            "new": "Create new project",
            "init": "Initialize project",
            "build": "Build project",
            "run": "Run project",
            "test": "Run tests",
            "check": "Check project",
            "clean": "Clean build",
            "doc": "Build documentation",
            "publish": "Publish crate",
            "install": "Install binary",
            "update": "Update dependencies",
            "fmt": "Format code",
            "clippy": "Lint code",
        },
    ),
}

WINDOWS_COMMANDS: Final[dict[str, CommandInfo]] = {
    "dir": _info(
        "List directory contents",
        ["/a", "/b", "/c", "/d", "/l", "/n", "/o", "/p", "/q", "/r", "/s", "/t",
         "/w", "/x"],
        arg_kind=ArgKind.PATH,
    ),
    "cls": _info("Clear screen"),
    "copy": _info(
        "Copy files",
        ["/a", "/b", "/d", "/v", "/y", "/-y", "/z"],
        arg_kind=ArgKind.PATH,
    ),
    "move": _info("Move files", ["/y", "/-y"], arg_kind=ArgKind.PATH),
    "del": _info(
        "Delete files", ["/p", "/f", "/s", "/q", "/a"], arg_kind=ArgKind.PATH
    ),
    "type": _info("Display file contents", arg_kind=ArgKind.FILE),
    "ipconfig": _info(
        "IP configuration",
        ["/all", "/release", "/renew", "/flushdns", "/displaydns"],
    ),
    "tasklist": _info("List running processes", ["/v", "/svc", "/fi", "/fo", "/m"]),
    "taskkill": _info("Kill processes", ["/pid", "/im", "/f", "/t"]),
    "systeminfo": _info("Display system info", ["/s", "/u", "/p", "/fo"]),
}

COMMON_FLAG_DESCRIPTIONS: Final[dict[str, str]] = {
    "-h": "Show help",
    "--help": "Show help message",
    "-v": "Verbose output",
    "--verbose": "Verbose output",
    "-V": "Show version",
    "--version": "Show version",
    "-f": "Force operation",
    "--force": "Force operation",
    "-r": "Recursive",
    "-R": "Recursive",
    "--recursive": "Recursive operation",
    "-q": "Quiet mode",
    "--quiet": "Suppress output",
    "-n": "Dry run / line numbers",
    "--dry-run": "Show what would be done",
    "-y": "Yes to all prompts",
    "--yes": "Assume yes",
}

_PIP_FLAG_DESCRIPTIONS: Final[dict[str, str]] = {
    "-U": "Upgrade package",
    "--upgrade": "Upgrade package to latest",
    "-e": "Install in editable mode",
    "--editable": "Install in editable mode",
    "-r": "Install from requirements file",
    "--requirement": "Install from requirements file",
    "--user": "Install to user directory",
    "--no-cache-dir": "Disable cache",
    "--pre": "Include pre-releases",
    "-t": "Install to target directory",
    "--target": "Target directory",
    "--no-deps": "Skip dependencies",
    "--index-url": "Base URL of package index",
}

# Keys are a command or a "command subcommand" path; the longest match wins.
COMMAND_FLAG_DESCRIPTIONS: Final[dict[str, dict[str, str]]] = {
    "pip": _PIP_FLAG_DESCRIPTIONS,
    "pip3": _PIP_FLAG_DESCRIPTIONS,
    "npm": {
        "-g": "Install globally",
        "--global": "Install globally",
        "-D": "Save as dev dependency",
        "--save-dev": "Save as dev dependency",
        "-S": "Save as dependency",
        "--save": "Save as dependency",
        "--production": "Production mode",
        "--legacy-peer-deps": "Ignore peer deps",
    },
    "git": {
        "-a": "All / add all",
        "-m": "Message",
        "-b": "Branch",
        "--all": "All branches/files",
        "--amend": "Amend previous commit",
        "--no-edit": "Keep previous message",
        "--rebase": "Rebase instead of merge",
        "-u": "Set upstream",
        "--set-upstream": "Set upstream branch",
        "-d": "Delete",
        "-D": "Force delete",
    },
    "git commit": {
        "-a": "Stage all tracked changes",
        "-m": "Commit message",
    },
    "git branch": {
        "-a": "List local and remote branches",
        "-d": "Delete a merged branch",
    },
}


def flag_description(command: str, flag: str, subcommand: str | None = None) -> str:
    """Human description for a flag with no parsed metadata."""
    keys = [f"{command} {subcommand}", command] if subcommand else [command]
    for key in keys:
        table = COMMAND_FLAG_DESCRIPTIONS.get(key)
        if table and flag in table:
            return table[flag]
    return COMMON_FLAG_DESCRIPTIONS.get(flag, "Option")


class CommandCatalog:
    """Known commands plus commands learned from `--help` at runtime.

    Static entries are ground truth and always shadow learned ones. Learned
    entries live as long as the catalog.
    """

    def __init__(
        self,
        *,
        windows: bool | None = None,
        static: Mapping[str, CommandInfo] | None = None,
    ) -> None:
        self.windows = os.name == "nt" if windows is None else windows
        table = dict(KNOWN_COMMANDS if static is None else static)
        if self.windows:
            for key, info in WINDOWS_COMMANDS.items():
                table.setdefault(key, info)
        self._static: dict[str, CommandInfo] = table
        self._learned: dict[str, CommandInfo] = {}
        self._no_content: set[str] = set()

    def get(self, key: str) -> CommandInfo | None:
        info = self._static.get(key)
        if info is not None:
            return info
        return self._learned.get(key)

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and self.get(key) is not None

    @property
    def learned(self) -> Mapping[str, CommandInfo]:
        return dict(self._learned)

    def command_names(self) -> list[str]:
        """Top-level command keys (no subcommand paths)."""
        names = {key for key in self._static if " " not in key}
        names.update(key for key in self._learned if " " not in key)
        return sorted(names)

    async def learn(self, key: str, runner: CommandRunner) -> CommandInfo | None:
        """Probe `<key> --help` and cache the result if it parsed to anything."""
        cached = self.get(key)
        if cached is not None:
            return cached
        if not key or key.startswith("-") or key in self._no_content:
            return None
        try:
            output = await runner(f"{key} --help")
        except Exception as e:
            # Runner failures are retried on a later query.
            _debug(f"help probe failed for {key!r}: {e}")
            return None
        if not isinstance(output, str) or not output.strip():
            self._no_content.add(key)
            return None
        _debug(f"help text for {key!r}: {len(output)} chars", level=2)
        info = parse_help(output)
        if not info.has_content:
            self._no_content.add(key)
            return None
        self._learned[key] = info
        _debug(
            f"learned {key!r}: {len(info.flags)} flags, "
            f"{len(info.subcommands)} subcommands"
        )
        return info

    async def resolve(
        self, tokens: list[str], runner: CommandRunner | None = None
    ) -> Resolution:
        """Walk tokens from the command through any recognized subcommands."""
        if not tokens or not tokens[0]:
            return Resolution(key="", info=None, depth=0)

        key = tokens[0]
        info = self.get(key)
        if info is None and runner is not None:
            info = await self.learn(key, runner)
        depth = 1 if info is not None else 0

        for token in tokens[1:]:
            if not token or token.startswith("-"):
                break
            candidate = f"{key} {token}"
            candidate_info = self.get(candidate)
            # Only probe tokens the parent lists as subcommands; anything else is
            # an ordinary argument.
            if (
                candidate_info is None
                and runner is not None
                and info is not None
                and token in info.subcommands
            ):
                candidate_info = await self.learn(candidate, runner)
            if candidate_info is None:
                break
            key, info, depth = candidate, candidate_info, depth + 1

        return Resolution(key=key, info=info, depth=depth)


T = TypeVar("T")


def fuzzy_score(candidate: str, query: str) -> float:
    """Score how well `query` matches `candidate`; 0 means no match.

    A substring hit always scores above 100 and so outranks any subsequence
    match. Otherwise every query character must appear in order; the score is
    the matched fraction scaled to 50 plus 5 for each match adjacent to the
    previous one.
    """
    if not candidate:
        return 0.0
    if query in candidate:
        return 100 + (len(query) / len(candidate)) * 50

    query_idx = 0
    matched = 0
    last_match = -1
    consecutive_bonus = 0.0
    for idx, ch in enumerate(candidate):
        if query_idx >= len(query):
            break
        if ch == query[query_idx]:
            matched += 1
            if last_match == idx - 1:
                consecutive_bonus += 5
            last_match = idx
            query_idx += 1

    if query_idx < len(query):
        return 0.0
    return matched / len(candidate) * 50 + consecutive_bonus


def fuzzy_rank(
    items: Iterable[T],
    query: str,
    *,
    key: Callable[[T], str],
    limit: int,
) -> list[T]:
    """Case-insensitive fuzzy filter; best first, ties keep input order."""
    if not query:
        return list(items)[:limit]
    lowered = query.lower()
    scored: list[tuple[float, T]] = []
    for item in items:
        score = fuzzy_score(key(item).lower(), lowered)
        if score > 0:
            scored.append((score, item))
    scored.sort(key=lambda pair: pair[0], reverse=True)
    return [item for _, item in scored[:limit]]


class HistoryStore:
    """Command history, oldest first internally, capped with FIFO eviction."""

    def __init__(self, *, max_size: int = MAX_HISTORY_SIZE) -> None:
        self.max_size = max(1, max_size)
        self._entries: deque[HistoryEntry] = deque(maxlen=self.max_size)

    def __len__(self) -> int:
        return len(self._entries)

    def insert(self, entry: HistoryEntry) -> None:
        for existing in [e for e in self._entries if e.command == entry.command]:
            self._entries.remove(existing)
        self._entries.append(entry)

    def add(
        self,
        command: str,
        *,
        directory: str | None = None,
        exit_code: int | None = None,
        timestamp: datetime | None = None,
    ) -> HistoryEntry | None:
        trimmed = command.strip()
        if not trimmed:
            return None
        entry = HistoryEntry(
            command=trimmed,
            timestamp=timestamp or _utc_now(),
            directory=directory,
            exit_code=exit_code,
        )
        self.insert(entry)
        return entry

    def entries(self) -> list[HistoryEntry]:
        """Most recent first."""
        return list(reversed(self._entries))

    def search(
        self, query: str, *, limit: int = HISTORY_SEARCH_LIMIT
    ) -> list[HistoryEntry]:
        return fuzzy_rank(
            self.entries(), query, key=lambda entry: entry.command, limit=limit
        )

    def to_records(self) -> list[HistoryRecord]:
        return [entry.to_record() for entry in self._entries]


class RecentDirectories:
    """Most-recent-first directory list; re-adding moves a path to the front."""

    def __init__(self, *, max_size: int = MAX_RECENT_DIRS) -> None:
        self.max_size = max(1, max_size)
        self._dirs: deque[str] = deque(maxlen=self.max_size)

    def __len__(self) -> int:
        return len(self._dirs)

    def add(self, directory: str) -> None:
        if not directory:
            return
        try:
            self._dirs.remove(directory)
        except ValueError:
            pass
        self._dirs.appendleft(directory)

    def load(self, directories: Iterable[str]) -> None:
        for directory in reversed(list(directories)):
            self.add(directory)

    def to_list(self) -> list[str]:
        return list(self._dirs)

    def search(self, query: str, *, limit: int = DIRECTORY_SEARCH_LIMIT) -> list[str]:
        return fuzzy_rank(self._dirs, query, key=lambda path: path, limit=limit)


# File classification for path completion.
_CODE_EXTENSIONS: Final[tuple[str, ...]] = (
    ".py", ".js", ".ts", ".dart", ".java", ".c", ".cpp", ".rs", ".go", ".rb",
    ".php", ".swift", ".kt",
)
_CONFIG_EXTENSIONS: Final[tuple[str, ...]] = (
    ".json", ".yaml", ".yml", ".toml", ".xml", ".ini", ".conf", ".config",
)
_DOCUMENT_EXTENSIONS: Final[tuple[str, ...]] = (
    ".md", ".txt", ".doc", ".docx", ".pdf", ".rst",
)
_IMAGE_EXTENSIONS: Final[tuple[str, ...]] = (
    ".jpg", ".jpeg", ".png", ".gif", ".svg", ".ico", ".webp",
)
_ARCHIVE_EXTENSIONS: Final[tuple[str, ...]] = (
    ".zip", ".tar", ".gz", ".bz2", ".xz", ".7z", ".rar",
)
_SCRIPT_EXTENSIONS: Final[tuple[str, ...]] = (".sh", ".bash", ".zsh", ".fish")

FILE_TYPE_BY_EXTENSION: Final[dict[str, SuggestionType]] = {
    **dict.fromkeys(_CODE_EXTENSIONS, SuggestionType.CODE_FILE),
    **dict.fromkeys(_CONFIG_EXTENSIONS, SuggestionType.CONFIG_FILE),
    **dict.fromkeys(_DOCUMENT_EXTENSIONS, SuggestionType.DOCUMENT),
    **dict.fromkeys(_IMAGE_EXTENSIONS, SuggestionType.IMAGE),
    **dict.fromkeys(_ARCHIVE_EXTENSIONS, SuggestionType.ARCHIVE),
    **dict.fromkeys(_SCRIPT_EXTENSIONS, SuggestionType.SCRIPT),
}

FILE_DESCRIPTIONS: Final[dict[str, str]] = {
    ".py": "Python file",
    ".js": "JavaScript file",
    ".ts": "TypeScript file",
    ".dart": "Dart file",
    ".java": "Java file",
    ".c": "C file",
    ".cpp": "C++ file",
    ".rs": "Rust file",
    ".go": "Go file",
    ".rb": "Ruby file",
    ".php": "PHP file",
    ".swift": "Swift file",
    ".kt": "Kotlin file",
    ".json": "JSON file",
    ".yaml": "YAML file",
    ".yml": "YAML file",
    ".toml": "TOML file",
    ".xml": "XML file",
    ".md": "Markdown file",
    ".txt": "Text file",
    ".sh": "Shell script",
    ".zip": "ZIP archive",
    ".tar": "TAR archive",
    ".gz": "Gzip archive",
}

WINDOWS_EXECUTABLE_EXTENSIONS: Final[frozenset[str]] = frozenset(
    {".exe", ".bat", ".cmd", ".ps1", ".com"}
)


def _is_separator(ch: str) -> bool:
    return ch == "/" or ch == os.sep


def _ends_with_separator(text: str) -> bool:
    return bool(text) and _is_separator(text[-1])


def _has_separator(text: str) -> bool:
    return "/" in text or os.sep in text


def resolve_home_directory(override: str | None = None) -> str:
    if override:
        return override
    return os.environ.get("HOME") or os.environ.get("USERPROFILE") or ""


def _is_executable(entry: DirectoryEntry, *, windows: bool) -> bool:
    if entry.is_directory:
        return False
    if windows:
        return os.path.splitext(entry.name)[1].lower() in WINDOWS_EXECUTABLE_EXTENSIONS
    return "x" in (entry.permissions or "")


def classify_entry(
    entry: DirectoryEntry, *, windows: bool = False
) -> tuple[SuggestionType, str]:
    """Suggestion type and short description for a listing row."""
    if entry.is_directory:
        return SuggestionType.DIRECTORY, "Directory"
    if _is_executable(entry, windows=windows):
        return SuggestionType.EXECUTABLE, "Executable"
    extension = os.path.splitext(entry.name)[1].lower()
    return (
        FILE_TYPE_BY_EXTENSION.get(extension, SuggestionType.FILE),
        FILE_DESCRIPTIONS.get(extension, ""),
    )


def _path_suggestion(
    entry: DirectoryEntry, *, base_path: str, windows: bool
) -> Suggestion:
    kind, description = classify_entry(entry, windows=windows)
    name = entry.name
    return Suggestion(
        text=f"{base_path}{name}/" if entry.is_directory else f"{base_path}{name}",
        display_text=name,
        description=description,
        type=kind,
        is_directory=entry.is_directory,
        full_path=entry.path,
        sort_key=f"{'0' if entry.is_directory else '1'}{name.lower()}",
    )


def _scan_local_directory(path: str) -> list[DirectoryEntry]:
    entries: list[DirectoryEntry] = []
    with os.scandir(path) as listing:
        for item in listing:
            try:
                info = item.stat()
                is_dir = item.is_dir()
            except OSError:
                continue
            entries.append(
                DirectoryEntry(
                    name=item.name,
                    is_directory=is_dir,
                    path=item.path,
                    size=0 if is_dir else info.st_size,
                    permissions=stat.filemode(info.st_mode),
                )
            )
    return entries


async def list_local_directory(path: str) -> list[DirectoryEntry]:
    """Default directory fetcher for the local filesystem."""
    return await asyncio.to_thread(_scan_local_directory, path)


async def list_directory_suggestions(
    path: str,
    *,
    prefix: str = "",
    base_path: str = "",
    fetcher: DirectoryFetcher = list_local_directory,
    windows: bool = False,
) -> list[Suggestion]:
    try:
        raw_entries = list(await fetcher(path))
    except Exception as e:
        _debug(f"directory listing failed for {path!r}: {e}")
        return []

    lowered_prefix = prefix.lower()
    suggestions: list[Suggestion] = []
    for raw in raw_entries:
        try:
            entry = _entry_from_payload(raw)
        except ValueError as e:
            _debug(f"skipping directory entry in {path!r}: {e}")
            continue
        if entry.name.startswith(".") and not prefix.startswith("."):
            continue
        if lowered_prefix and not entry.name.lower().startswith(lowered_prefix):
            continue
        suggestions.append(_path_suggestion(entry, base_path=base_path, windows=windows))

    suggestions.sort(key=lambda s: s.sort_key)
    return suggestions[:PATH_SUGGESTION_LIMIT]


def _with_trailing_separator(path: str) -> str:
    return path if _ends_with_separator(path) else path + "/"


async def complete_path(
    partial: str,
    current_directory: str,
    *,
    fetcher: DirectoryFetcher = list_local_directory,
    home_directory: str | None = None,
    windows: bool = False,
) -> list[Suggestion]:
    """Complete a partial path against a (possibly remote) directory listing.

    Suggestion text keeps the user's spelling of the directory part (relative,
    absolute or `~`-prefixed) so it can replace the token verbatim.
    """

    async def listing(search: str, prefix: str, base: str) -> list[Suggestion]:
        return await list_directory_suggestions(
            search, prefix=prefix, base_path=base, fetcher=fetcher, windows=windows
        )

    if not partial:
        return await listing(current_directory, "", "")

    if partial == "~":
        return await listing(resolve_home_directory(home_directory), "", "~/")

    if _ends_with_separator(partial):
        if os.path.isabs(partial):
            search = partial
        elif partial.startswith("~"):
            search = resolve_home_directory(home_directory) + partial[1:]
        else:
            search = os.path.join(current_directory, partial)
        search = search.rstrip("/" + os.sep) or search[:1]
        return await listing(search, "", partial)

    if os.path.isabs(partial):
        return await listing(
            os.path.dirname(partial),
            os.path.basename(partial),
            _with_trailing_separator(os.path.dirname(partial)),
        )

    if partial.startswith("~"):
        expanded = resolve_home_directory(home_directory) + partial[1:]
        base = "~" + os.path.dirname(partial[1:])
        base = "~/" if base == "~" else _with_trailing_separator(base)
        return await listing(
            os.path.dirname(expanded), os.path.basename(expanded), base
        )

    if _has_separator(partial):
        full_path = os.path.join(current_directory, partial)
        return await listing(
            os.path.dirname(full_path),
            os.path.basename(full_path),
            _with_trailing_separator(os.path.dirname(partial)),
        )

    return await listing(current_directory, partial, "")


def scan_search_path(*, windows: bool | None = None) -> list[str]:
    """Command names found in the executable search path (`PATH`)."""
    is_windows = os.name == "nt" if windows is None else windows
    pathext = {
        ext.lower()
        for ext in os.environ.get("PATHEXT", ".COM;.EXE;.BAT;.CMD").split(";")
        if ext
    }
    seen: set[str] = set()
    for directory in os.environ.get("PATH", "").split(os.pathsep):
        if not directory:
            continue
        try:
            with os.scandir(directory) as entries:
                for entry in entries:
                    name = entry.name
                    if name.startswith("."):
                        continue
                    try:
                        if not entry.is_file():
                            continue
                    except OSError:
                        continue
                    if is_windows:
                        stem, ext = os.path.splitext(name)
                        if ext.lower() in pathext and stem:
                            seen.add(stem)
                        continue
                    # Skip files with extensions (libraries, docs, scripts).
                    if "." in name:
                        continue
                    try:
                        if not os.access(entry.path, os.X_OK):
                            continue
                    except OSError:
                        continue
                    seen.add(name)
        except OSError:
            continue
    return sorted(seen)


_UPSTREAM_RE: Final[re.Pattern[str]] = re.compile(
    r"git push --set-upstream (\S+) (\S+)"
)
_PY_MODULE_RE: Final[re.Pattern[str]] = re.compile(
    r"No module named ['\"]?([A-Za-z_][\w.]*)['\"]?"
)
_MISSING_PATH_RE: Final[re.Pattern[str]] = re.compile(r"(\S+): No such file")


def detect_quick_fixes(output: str, last_command: str) -> list[QuickFixSuggestion]:
    """Match captured output of a failed command against known error signatures.

    Checks are independent; several fixes may be returned for one output.
    """
    fixes: list[QuickFixSuggestion] = []
    command = last_command.strip()

    if "git push --set-upstream" in output or "no upstream branch" in output:
        match = _UPSTREAM_RE.search(output)
        if match is not None:
            fixes.append(
                QuickFixSuggestion(
                    title="Set upstream and push",
                    command=f"git push --set-upstream {match.group(1)} {match.group(2)}",
                    description="Push and set upstream branch",
                )
            )
        else:
            fixes.append(
                QuickFixSuggestion(
                    title="Push with upstream",
                    command="git push -u origin HEAD",
                    description="Push current branch to origin",
                )
            )

    if "Cannot find module" in output or "MODULE_NOT_FOUND" in output:
        fixes.append(
            QuickFixSuggestion(
                title="Install dependencies",
                command="npm install",
                description="Run npm install to install missing packages",
            )
        )

    if "ModuleNotFoundError" in output or "No module named" in output:
        match = _PY_MODULE_RE.search(output)
        if match is not None:
            package = match.group(1).split(".")[0]
            fixes.append(
                QuickFixSuggestion(
                    title=f"Install {package}",
                    command=f"pip install {package}",
                    description="Install missing Python package",
                )
            )

    if "Permission denied" in output and command and not command.startswith("sudo "):
        fixes.append(
            QuickFixSuggestion(
                title="Run with sudo",
                command=f"sudo {command}",
                description="Re-run command with elevated privileges",
            )
        )

    if "No such file or directory" in output:
        match = _MISSING_PATH_RE.search(output)
        if match is not None:
            path = match.group(1).strip("'\"`")
            if "." not in os.path.basename(path):
                fixes.append(
                    QuickFixSuggestion(
                        title="Create directory",
                        command=f"mkdir -p {path}",
                        description="Create the missing directory",
                    )
                )
            else:
                fixes.append(
                    QuickFixSuggestion(
                        title="Create file",
                        command=f"touch {path}",
                        description="Create the missing file",
                    )
                )

    if "not a git repository" in output:
        fixes.append(
            QuickFixSuggestion(
                title="Initialize git",
                command="git init",
                description="Initialize a new git repository",
            )
        )

    if "pubspec.yaml" in output and (
        "not found" in output or "needs to be run" in output
    ):
        fixes.append(
            QuickFixSuggestion(
                title="Get dependencies",
                command="flutter pub get",
                description="Get Flutter dependencies",
            )
        )

    return fixes


def tokenize_input(text: str) -> list[str]:
    """Split an input line on spaces, honoring single and double quotes.

    Quote characters are dropped. A trailing unquoted space appends an empty
    token: the user is about to type a new argument.
    """
    tokens: list[str] = []
    buffer: list[str] = []
    quote: str | None = None
    # Set by a quote, so `''` still yields an (empty) argument.
    quoted = False

    for ch in text:
        if quote is None and ch in ("'", '"'):
            quote = ch
            quoted = True
        elif quote is not None and ch == quote:
            quote = None
        elif ch == " " and quote is None:
            if buffer or quoted:
                tokens.append("".join(buffer))
                buffer.clear()
                quoted = False
        else:
            buffer.append(ch)

    if buffer or quoted:
        tokens.append("".join(buffer))
    if text.endswith(" ") and quote is None:
        tokens.append("")
    return tokens


_PATH_FLAG_KEYWORDS: Final[tuple[str, ...]] = (
    "path",
    "dir",
    "directory",
    "file",
    "root",
    "prefix",
    "src",
    "dest",
)


def _flag_rank(flag: str, typed: str) -> int:
    """0 ranks first. `--` typed favors long flags; otherwise short ones."""
    is_long = flag.startswith("--")
    if typed.startswith("--"):
        return 0 if is_long else 1
    return 1 if is_long else 0


def _pending_value_flag(tokens: list[str], info: CommandInfo | None) -> str | None:
    """The first value-taking flag on the line that has no value after it.

    Any following token that is non-empty and not itself a flag counts as the
    value; its shape is not checked.
    """
    if info is None or not info.flag_metadata:
        return None
    for idx, token in enumerate(tokens):
        if not token.startswith("-"):
            continue
        meta = info.flag_metadata.get(token)
        if meta is None or not meta.expects_value:
            continue
        following = tokens[idx + 1] if idx + 1 < len(tokens) else ""
        if not following or following.startswith("-"):
            return token
    return None


def _flag_likely_path(flag: str, meta: FlagMetadata | None) -> bool:
    text = f"{flag.lower()} {meta.description.lower() if meta else ''}"
    return any(keyword in text for keyword in _PATH_FLAG_KEYWORDS)


class SuggestionEngine:
    """Computes ranked suggestions for a terminal input line.

    One engine is constructed per terminal front end and owns the catalog,
    history and path caches. Only the suggestion-refresh flow mutates them,
    so no locking is needed.
    """

    def __init__(
        self,
        *,
        catalog: CommandCatalog | None = None,
        store: KeyValueStore | None = None,
        windows: bool | None = None,
        path_scanner: PathScanner | None = None,
        clock: Callable[[], float] = time.monotonic,
        path_cache_ttl_s: float | None = None,
        max_history: int | None = None,
        max_recent_dirs: int | None = None,
    ) -> None:
        self.catalog = catalog or CommandCatalog(windows=windows)
        self.windows = self.catalog.windows
        self.store = store
        self.history = HistoryStore(
            max_size=max_history
            or _setting_int(config_key="max_history", default=MAX_HISTORY_SIZE)
        )
        self.recent_directories = RecentDirectories(
            max_size=max_recent_dirs
            or _setting_int(config_key="max_recent_dirs", default=MAX_RECENT_DIRS)
        )
        self._path_scanner: PathScanner = path_scanner or (
            lambda: scan_search_path(windows=self.windows)
        )
        self._clock = clock
        self._path_cache_ttl_s = (
            path_cache_ttl_s
            if path_cache_ttl_s is not None
            else _setting_float(config_key="path_cache_ttl_s", default=PATH_CACHE_TTL_S)
        )
        self._path_commands: list[str] | None = None
        self._path_cache_time: float | None = None
        self._last_exit_codes: dict[str, int] = {}
        # Settle verbosity now so queries never read config.json.
        _verbose_level()

    # Persistence

    async def initialize(self) -> None:
        """Load persisted history and recent directories; missing data is fine."""
        if self.store is None:
            return
        try:
            raw_history = await self.store.get(HISTORY_STORE_KEY)
            raw_dirs = await self.store.get(RECENT_DIRS_STORE_KEY)
        except Exception as e:
            _debug(f"failed to load persisted state: {e}")
            return

        if isinstance(raw_history, list):
            for item in raw_history:
                try:
                    record = validate_history_record(payload=item)
                except ValueError as e:
                    _debug(f"skipping history record: {e}")
                    continue
                entry = HistoryEntry.from_record(record)
                self.history.insert(entry)
                self._remember_exit_code(entry.command, entry.exit_code)
        elif raw_history is not None:
            _debug("ignoring persisted history: not a list")

        if raw_dirs is not None:
            try:
                self.recent_directories.load(
                    validate_recent_directories(payload=raw_dirs)
                )
            except ValueError as e:
                _debug(f"ignoring persisted recent directories: {e}")

    async def _save(self) -> None:
        if self.store is None:
            return
        try:
            await self.store.put(HISTORY_STORE_KEY, self.history.to_records())
            await self.store.put(
                RECENT_DIRS_STORE_KEY, self.recent_directories.to_list()
            )
        except Exception as e:
            # The next mutation tries again.
            _debug(f"failed to persist state: {e}")

    def _remember_exit_code(self, command: str, exit_code: int | None) -> None:
        if exit_code is None:
            return
        parts = command.split()
        if parts:
            self._last_exit_codes[parts[0]] = exit_code

    async def add_to_history(
        self,
        command: str,
        *,
        directory: str | None = None,
        exit_code: int | None = None,
    ) -> None:
        entry = self.history.add(command, directory=directory, exit_code=exit_code)
        if entry is None:
            return
        self._remember_exit_code(entry.command, exit_code)
        await self._save()

    async def add_recent_directory(self, directory: str) -> None:
        if not directory:
            return
        self.recent_directories.add(directory)
        await self._save()

    @property
    def command_history(self) -> list[HistoryEntry]:
        return self.history.entries()

    def search_history(
        self, query: str, *, limit: int = HISTORY_SEARCH_LIMIT
    ) -> list[HistoryEntry]:
        return self.history.search(query, limit=limit)

    def search_directories(
        self, query: str, *, limit: int = DIRECTORY_SEARCH_LIMIT
    ) -> list[str]:
        return self.recent_directories.search(query, limit=limit)

    def get_last_exit_code(self, command: str) -> int | None:
        parts = command.split()
        if not parts:
            return None
        return self._last_exit_codes.get(parts[0])

    def get_quick_fixes(self, output: str, last_command: str) -> list[QuickFixSuggestion]:
        return detect_quick_fixes(output, last_command)

    # Suggestions

    async def get_suggestions(
        self,
        text: str,
        current_directory: str,
        *,
        trigger_character: str | None = None,
        auto_trigger: bool = False,
        command_runner: CommandRunner | None = None,
        directory_fetcher: DirectoryFetcher | None = None,
        home_directory: str | None = None,
    ) -> list[Suggestion]:
        """Main entry point, called on every (debounced) input change.

        `auto_trigger` is set when the front end just accepted a suggestion;
        together with a trailing space it switches to contextual suggestions.
        """
        if not text.strip():
            return []

        started = time.perf_counter()
        fetcher = directory_fetcher or list_local_directory
        tokens = tokenize_input(text)
        if not any(tokens):
            # Only quotes and spaces, e.g. `'' ` or a lone `"`.
            return []
        current = tokens[-1] if tokens else ""

        async def paths(partial: str) -> list[Suggestion]:
            return await complete_path(
                partial,
                current_directory,
                fetcher=fetcher,
                home_directory=home_directory,
                windows=self.windows,
            )

        if trigger_character == "-":
            resolution = await self.catalog.resolve(tokens, command_runner)
            result = self._flag_suggestions(tokens, resolution)
        elif trigger_character and _is_separator(trigger_character):
            result = await paths(current)
        elif len(tokens) == 1:
            result = await self._command_suggestions(tokens[0])
        else:
            resolution = await self.catalog.resolve(tokens, command_runner)
            info = resolution.info
            if current.startswith("-"):
                result = self._flag_suggestions(tokens, resolution)
            elif _ends_with_separator(current):
                result = await paths(current)
            elif (
                info is not None
                and info.subcommands
                and len(tokens) == resolution.depth + 1
            ):
                result = self._subcommand_suggestions(info, current)
            elif not current and (auto_trigger or text.endswith(" ")):
                result = await self._contextual_suggestions(
                    tokens,
                    resolution,
                    current_directory,
                    fetcher=fetcher,
                    home_directory=home_directory,
                )
            else:
                result = await paths(current)

        elapsed_ms = (time.perf_counter() - started) * 1000
        _debug(f"{len(result)} suggestions for {text!r} in {elapsed_ms:.1f}ms", level=2)
        return result

    async def _get_path_commands(self) -> list[str]:
        now = self._clock()
        if (
            self._path_commands is not None
            and self._path_cache_time is not None
            and now - self._path_cache_time < self._path_cache_ttl_s
        ):
            return self._path_commands
        try:
            found = await asyncio.to_thread(lambda: sorted(set(self._path_scanner())))
        except Exception as e:
            _debug(f"search path scan failed: {e}")
            found = []
        self._path_commands = found
        self._path_cache_time = now
        return found

    async def _command_suggestions(self, prefix: str) -> list[Suggestion]:
        lowered = prefix.lower()
        suggestions: list[Suggestion] = []
        seen: set[str] = set()

        for name in self.catalog.command_names():
            if not name.lower().startswith(lowered):
                continue
            info = self.catalog.get(name)
            suggestions.append(
                Suggestion(
                    text=name,
                    display_text=name,
                    description=info.description if info else "",
                    type=SuggestionType.COMMAND,
                    sort_key=f"0{name}",
                )
            )
            seen.add(name)

        for name in await self._get_path_commands():
            if name in seen or not name.lower().startswith(lowered):
                continue
            suggestions.append(
                Suggestion(
                    text=name,
                    display_text=name,
                    type=SuggestionType.COMMAND,
                    sort_key=f"1{name}",
                )
            )
            seen.add(name)

        from_history = 0
        for entry in self.history.entries():
            if from_history >= HISTORY_COMMAND_LIMIT:
                break
            name = entry.command.split()[0]
            if name in seen or not name.lower().startswith(lowered):
                continue
            suggestions.append(
                Suggestion(
                    text=name,
                    display_text=name,
                    description="From history",
                    type=SuggestionType.HISTORY,
                    sort_key=f"2{name}",
                )
            )
            seen.add(name)
            from_history += 1

        suggestions.sort(key=lambda s: s.sort_key)
        return suggestions[:COMMAND_SUGGESTION_LIMIT]

    @staticmethod
    def _command_and_subcommand(resolution: Resolution) -> tuple[str, str | None]:
        parts = resolution.key.split(" ")
        return parts[0], parts[1] if len(parts) > 1 else None

    def _flag_suggestion(
        self, flag: str, info: CommandInfo, resolution: Resolution, sort_key: str
    ) -> Suggestion:
        meta = info.flag_metadata.get(flag)
        if meta is not None and meta.description:
            description = meta.description
        else:
            command, subcommand = self._command_and_subcommand(resolution)
            description = flag_description(command, flag, subcommand)
        return Suggestion(
            text=flag,
            display_text=flag,
            description=description,
            type=SuggestionType.FLAG,
            sort_key=sort_key,
            requires_value=bool(meta and meta.expects_value),
        )

    def _flag_suggestions(
        self, tokens: list[str], resolution: Resolution
    ) -> list[Suggestion]:
        info = resolution.info
        if info is None or not tokens:
            return []
        typed = tokens[-1]
        lowered = typed.lower()
        used = {token for token in tokens[:-1] if token.startswith("-")}

        suggestions = [
            self._flag_suggestion(
                flag, info, resolution, f"{_flag_rank(flag, typed)}{flag}"
            )
            for flag in dict.fromkeys(info.flags)
            if flag not in used and flag.lower().startswith(lowered)
        ]
        suggestions.sort(key=lambda s: s.sort_key)
        return suggestions[:FLAG_SUGGESTION_LIMIT]

    def _subcommand_suggestions(
        self, info: CommandInfo, prefix: str
    ) -> list[Suggestion]:
        lowered = prefix.lower()
        suggestions = [
            Suggestion(
                text=name,
                display_text=name,
                description=description,
                type=SuggestionType.SUBCOMMAND,
                sort_key=f"0{name}",
            )
            for name, description in info.subcommands.items()
            if name.lower().startswith(lowered)
        ]
        suggestions.sort(key=lambda s: s.sort_key)
        return suggestions[:PATH_SUGGESTION_LIMIT]

    async def _contextual_suggestions(
        self,
        tokens: list[str],
        resolution: Resolution,
        current_directory: str,
        *,
        fetcher: DirectoryFetcher,
        home_directory: str | None,
    ) -> list[Suggestion]:
        """Suggestions after a completed token: a flag's value, else flags then paths."""
        if len(tokens) < 2:
            return []
        info = resolution.info

        pending = _pending_value_flag(tokens, info)
        if pending is not None:
            meta = info.flag_metadata.get(pending) if info else None
            if not _flag_likely_path(pending, meta):
                return []
            return await complete_path(
                tokens[-1],
                current_directory,
                fetcher=fetcher,
                home_directory=home_directory,
                windows=self.windows,
            )

        suggestions: list[Suggestion] = []
        if info is not None:
            used = {token for token in tokens if token.startswith("-")}
            suggestions.extend(
                self._flag_suggestion(
                    flag, info, resolution, f"0{_flag_rank(flag, '')}{flag}"
                )
                for flag in dict.fromkeys(info.flags)
                if flag not in used
            )

        if info is not None and info.arg_kind in (
            ArgKind.FILE,
            ArgKind.DIRECTORY,
            ArgKind.PATH,
        ):
            listing = await list_directory_suggestions(
                current_directory, fetcher=fetcher, windows=self.windows
            )
            suggestions.extend(
                s.with_sort_key(f"1{s.sort_key}")
                for s in listing[:CONTEXTUAL_PATH_LIMIT]
            )

        suggestions.sort(key=lambda s: s.sort_key)
        return suggestions[:CONTEXTUAL_SUGGESTION_LIMIT]


class SuggestionSession:
    """Debounced suggestion refresh for one input field.

    Every `update()` restarts the debounce timer, so only the last keystroke
    in a burst triggers a query. A query whose input snapshot no longer
    matches the current text when it finishes is dropped.
    """

    def __init__(
        self,
        engine: SuggestionEngine,
        current_directory: str,
        *,
        on_update: Callable[[list[Suggestion]], None] | None = None,
        delay_s: float | None = None,
        command_runner: CommandRunner | None = None,
        directory_fetcher: DirectoryFetcher | None = None,
        home_directory: str | None = None,
    ) -> None:
        self.engine = engine
        self.current_directory = current_directory
        self.on_update = on_update
        self.delay_s = _debounce_seconds() if delay_s is None else max(0.0, delay_s)
        self.command_runner = command_runner
        self.directory_fetcher = directory_fetcher
        self.home_directory = home_directory
        self.text = ""
        self.suggestions: list[Suggestion] = []
        self.discarded = 0
        self.failures = 0
        self._timer: asyncio.TimerHandle | None = None
        self._inflight: set[asyncio.Task[None]] = set()

    def update(
        self,
        text: str,
        *,
        trigger_character: str | None = None,
        auto_trigger: bool = False,
    ) -> None:
        """Record new input and (re)schedule a refresh. Must run inside the loop."""
        self.text = text
        if self._timer is not None:
            self._timer.cancel()
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(
            self.delay_s, self._fire, text, trigger_character, auto_trigger
        )

    def _fire(
        self, snapshot: str, trigger_character: str | None, auto_trigger: bool
    ) -> None:
        self._timer = None
        task = asyncio.get_running_loop().create_task(
            self._query(snapshot, trigger_character, auto_trigger)
        )
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        task.add_done_callback(self._report_failure)

    def _report_failure(self, task: asyncio.Task[None]) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            self.failures += 1
            _debug(f"suggestion refresh failed: {error!r}")

    async def _query(
        self, snapshot: str, trigger_character: str | None, auto_trigger: bool
    ) -> None:
        result = await self.engine.get_suggestions(
            snapshot,
            self.current_directory,
            trigger_character=trigger_character,
            auto_trigger=auto_trigger,
            command_runner=self.command_runner,
            directory_fetcher=self.directory_fetcher,
            home_directory=self.home_directory,
        )
        if snapshot != self.text:
            self.discarded += 1
            _debug(f"discarding stale suggestions for {snapshot!r}", level=2)
            return
        self.suggestions = result
        if self.on_update is not None:
            self.on_update(result)

    @property
    def pending(self) -> bool:
        return self._timer is not None or bool(self._inflight)

    async def drain(self) -> None:
        """Wait until the debounce timer has fired and every query has finished."""
        while self.pending:
            if self._inflight:
                await asyncio.gather(*self._inflight, return_exceptions=True)
            else:
                await asyncio.sleep(self.delay_s)

    def close(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None


class CommandRunnerError(RuntimeError):
    pass


# Shells report an unknown command with this exit status.
_COMMAND_NOT_FOUND_STATUS: Final[int] = 127


class ShellCommandRunner:
    """Default `CommandRunner`: runs a command line through the user's shell.

    Returns stdout, or stderr when stdout is empty (plenty of tools print
    their help there).
    """

    def __init__(self, *, timeout_s: float | None = None) -> None:
        self.timeout_s = (
            timeout_s
            if timeout_s is not None
            else _setting_float(config_key="help_timeout_s", default=15.0)
        )

    async def __call__(self, command: str) -> str:
        try:
            process = await asyncio.create_subprocess_shell(
                command,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise CommandRunnerError(f"failed to start {command!r}: {e}") from e

        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(), timeout=self.timeout_s
            )
        except asyncio.TimeoutError as e:
            process.kill()
            await process.wait()
            raise CommandRunnerError(
                f"{command!r} timed out after {self.timeout_s:g}s"
            ) from e

        if process.returncode == _COMMAND_NOT_FOUND_STATUS:
            raise CommandRunnerError(f"command not found: {command!r}")
        output = stdout.decode(errors="replace")
        if not output.strip():
            output = stderr.decode(errors="replace")
        return output


class JsonFileStore:
    """`KeyValueStore` backed by a single JSON object on disk."""

    def __init__(self, path: Path | str | None = None) -> None:
        self.path = Path(path) if path is not None else cmdsense_store_path()

    def _read(self) -> dict:
        if not self.path.exists():
            return {}
        try:
            payload = json.loads(self.path.read_text())
        except (json.JSONDecodeError, OSError) as e:
            _debug(f"ignoring unreadable store {self.path}: {e}")
            return {}
        return payload if isinstance(payload, dict) else {}

    def _write(self, key: str, value: object) -> None:
        data = self._read()
        data[key] = value
        self.path.parent.mkdir(parents=True, exist_ok=True)
        # Atomic write: write to temp file then rename
        temp_path = self.path.with_suffix(f".tmp.{os.getpid()}")
        try:
            temp_path.write_text(json.dumps(data, indent=2, sort_keys=True) + "\n")
            temp_path.replace(self.path)
        except Exception:
            temp_path.unlink(missing_ok=True)
            raise

    async def get(self, key: str) -> object | None:
        data = await asyncio.to_thread(self._read)
        return data.get(key)

    async def put(self, key: str, value: object) -> None:
        await asyncio.to_thread(self._write, key, value)


# ANSI colors for terminal output
DIM: Final[str] = "\033[2m"
RESET: Final[str] = "\033[0m"
CYAN: Final[str] = "\033[36m"

PROBE_SCENARIOS: Final[tuple[str, ...]] = (
    "git",
    "git ",
    "git remote",
    "git remote ",
    "git remote a",
    "git commit --",
    "git commit -",
    "pip3",
    "pip3 ",
    "pip3 in",
    "pip3 install",
    "pip3 install ",
    "pip3 install --",
    "pip3 install -",
    "pip3 uninstall ",
    "pip3 list ",
    "pip3 list --",
    "pip3 list --cache-dir ",
    "pip3 list --path ",
    "cd ",
    "cat ./",
)


def truncate_description(text: str, max_length: int = 60) -> str:
    """Truncate description at a word boundary."""
    if len(text) <= max_length:
        return text
    limit = max_length - 3
    truncated = text[:limit]
    last_space = truncated.rfind(" ")
    if last_space > limit // 2:
        return truncated[:last_space] + "..."
    return truncated + "..."


def format_suggestions(
    *,
    suggestions: list[Suggestion],
    use_color: bool = True,
) -> str:
    """Format suggestions for terminal display, one per line."""
    if not suggestions:
        return ""

    lines: list[str] = []
    max_label_len = max(len(suggestion_label(s.type)) for s in suggestions)
    max_text_len = max(len(s.text) for s in suggestions)

    for s in suggestions:
        label = suggestion_label(s.type).ljust(max_label_len)
        text = s.text.ljust(max_text_len)
        description = truncate_description(s.description)
        if use_color:
            line = f"{DIM}{label}{RESET} {CYAN}{text}{RESET}"
            if description:
                line += f"  {DIM}{description}{RESET}"
        else:
            line = f"{label} {text}"
            if description:
                line += f"  {description}"
        lines.append(line.rstrip())

    return "\n".join(lines)


def format_quick_fixes(
    *,
    fixes: list[QuickFixSuggestion],
    use_color: bool = True,
) -> str:
    lines: list[str] = []
    for fix in fixes:
        if use_color:
            lines.append(f"{CYAN}{fix.command}{RESET}")
            lines.append(f"{DIM}  {fix.title}: {fix.description}{RESET}")
        else:
            lines.append(fix.command)
            lines.append(f"  {fix.title}: {fix.description}")
    return "\n".join(lines)


def _suggestion_payload(s: Suggestion) -> dict:
    return {
        "text": s.text,
        "display_text": s.display_text,
        "description": s.description,
        "type": s.type.value,
        "is_directory": s.is_directory,
        "full_path": s.full_path,
        "requires_value": s.requires_value,
    }


async def _run_suggest(args: argparse.Namespace) -> int:
    engine = SuggestionEngine(store=JsonFileStore())
    await engine.initialize()
    suggestions = await engine.get_suggestions(
        args.input,
        args.cwd or os.getcwd(),
        trigger_character=args.trigger,
        auto_trigger=args.auto,
        command_runner=ShellCommandRunner(),
    )
    if args.json:
        print(json.dumps([_suggestion_payload(s) for s in suggestions], indent=2))
    elif suggestions:
        print(format_suggestions(suggestions=suggestions, use_color=not args.no_color))
    return 0 if suggestions else 1


async def _run_parse_help(args: argparse.Namespace) -> int:
    command = " ".join(args.command)
    try:
        output = await ShellCommandRunner()(f"{command} --help")
    except CommandRunnerError as e:
        print(str(e), file=sys.stderr)
        return 1
    document = parse_help_document(output)
    print(json.dumps(document.to_dict(), indent=2))
    return 0 if document.has_content else 1


async def _run_probe(args: argparse.Namespace) -> int:
    engine = SuggestionEngine()
    runner = ShellCommandRunner()
    cwd = args.cwd or os.getcwd()
    print(f"Running suggestion probe from {cwd}")
    print("-" * 56)
    for text in args.inputs or PROBE_SCENARIOS:
        auto_trigger = text.endswith(" ")
        print(f'\nInput: "{text}"')
        print(f"Auto trigger: {str(auto_trigger).lower()}")
        suggestions = await engine.get_suggestions(
            text, cwd, auto_trigger=auto_trigger, command_runner=runner
        )
        if not suggestions:
            print("  (no suggestions)")
            continue
        for s in suggestions:
            print(f"  - {suggestion_label(s.type)} {s.text} ({s.description})")
    return 0


async def _run_history(args: argparse.Namespace) -> int:
    engine = SuggestionEngine(store=JsonFileStore())
    await engine.initialize()
    if args.history_action == "add":
        await engine.add_to_history(
            args.command,
            directory=args.dir or os.getcwd(),
            exit_code=args.exit_code,
        )
        return 0

    entries = engine.search_history(args.query, limit=max(1, args.limit))
    for entry in entries:
        print(entry.command)
    return 0 if entries else 1


async def _run_dirs(args: argparse.Namespace) -> int:
    engine = SuggestionEngine(store=JsonFileStore())
    await engine.initialize()
    if args.dirs_action == "add":
        await engine.add_recent_directory(os.path.abspath(args.path))
        return 0

    found = engine.search_directories(args.query, limit=max(1, args.limit))
    for directory in found:
        print(directory)
    return 0 if found else 1


def _run_fix(args: argparse.Namespace) -> int:
    fixes = detect_quick_fixes(sys.stdin.read(), args.command)
    if not fixes:
        return 1
    print(format_quick_fixes(fixes=fixes, use_color=not args.no_color))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cmdsense",
        description="Terminal command intelligence",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    subparsers = parser.add_subparsers(dest="action")

    # suggest command
    suggest_p = subparsers.add_parser("suggest", help="Rank completions for an input line")
    suggest_p.add_argument("input", help="Current input line")
    suggest_p.add_argument("--cwd", help="Working directory (default: current)")
    suggest_p.add_argument(
        "--auto",
        action="store_true",
        help="Treat input as just having accepted a suggestion",
    )
    suggest_p.add_argument("--trigger", help="Character that triggered the query")
    suggest_p.add_argument("--no-color", action="store_true", help="Disable colors")
    suggest_p.add_argument("--json", action="store_true", help="Print JSON")

    # parse-help command
    parse_p = subparsers.add_parser(
        "parse-help", help="Show what `<command> --help` parses into"
    )
    parse_p.add_argument("command", nargs="+", help="Command (and subcommands)")

    # probe command
    probe_p = subparsers.add_parser("probe", help="Run inputs through the engine")
    probe_p.add_argument("inputs", nargs="*", help="Inputs (default: built-in list)")
    probe_p.add_argument("--cwd", help="Working directory (default: current)")

    # history command
    history_p = subparsers.add_parser("history", help="Command history")
    history_sub = history_p.add_subparsers(dest="history_action", required=True)
    history_add = history_sub.add_parser("add", help="Record a command")
    history_add.add_argument("command", help="Command line to record")
    history_add.add_argument("--dir", help="Directory it ran in")
    history_add.add_argument("--exit-code", type=int, help="Exit status")
    history_search = history_sub.add_parser("search", help="Fuzzy search history")
    history_search.add_argument("query", nargs="?", default="")
    history_search.add_argument("--limit", type=int, default=HISTORY_SEARCH_LIMIT)

    # dirs command
    dirs_p = subparsers.add_parser("dirs", help="Recent directories")
    dirs_sub = dirs_p.add_subparsers(dest="dirs_action", required=True)
    dirs_add = dirs_sub.add_parser("add", help="Record a visited directory")
    dirs_add.add_argument("path", help="Directory path")
    dirs_search = dirs_sub.add_parser("search", help="Fuzzy search directories")
    dirs_search.add_argument("query", nargs="?", default="")
    dirs_search.add_argument("--limit", type=int, default=DIRECTORY_SEARCH_LIMIT)

    # fix command
    fix_p = subparsers.add_parser(
        "fix", help="Quick fixes for a failed command (output on stdin)"
    )
    fix_p.add_argument("--command", required=True, help="The command that failed")
    fix_p.add_argument("--no-color", action="store_true", help="Disable colors")

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.action is None:
        parser.print_usage(sys.stderr)
        return 2

    if args.action == "suggest":
        return asyncio.run(_run_suggest(args))
    elif args.action == "parse-help":
        return asyncio.run(_run_parse_help(args))
    elif args.action == "probe":
        return asyncio.run(_run_probe(args))
    elif args.action == "history":
        return asyncio.run(_run_history(args))
    elif args.action == "dirs":
        return asyncio.run(_run_dirs(args))
    elif args.action == "fix":
        return _run_fix(args)

    return 2


if __name__ == "__main__":
    sys.exit(main())
