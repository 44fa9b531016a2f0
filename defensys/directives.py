"""
Line-oriented editing of configuration directives.

A Directive describes one setting that must exist in a text configuration
file. Applying it changes only the lines it matches; every other byte of
the file, including line endings, is preserved.
"""

import re
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

CONFIG_ENCODING = "utf-8"
CONFIG_ERRORS = "surrogateescape"


class InsertionPolicy(Enum):
    """How a directive is written into its file."""

    REPLACE_IN_PLACE = "replace-in-place"
    APPEND_IF_ABSENT = "append-if-absent"
    REPLACE_WHOLE_BLOCK = "replace-whole-block"
    REMOVE = "remove"


@dataclass(frozen=True)
class Directive:
    """
    A setting that must (or must not) be present in a configuration file.

    Attributes:
        key: Setting name, e.g. ``LoginGraceTime``
        value: Desired value. For REPLACE_WHOLE_BLOCK this is the full file body.
        policy: Insertion policy
        separator: Text placed between key and value when rendering
        match: Regex locating existing occurrences. Defaults to the key at the
            start of a line, optionally commented out.
        section_end: Regex of the first line that ends the directive's scope.
            Lines from there on are neither matched nor appended after,
            e.g. ``Match`` blocks in sshd_config.
        comment: Comment line written above an appended directive
        case_sensitive: Whether the key match is case sensitive
    """

    key: str
    value: str = ""
    policy: InsertionPolicy = InsertionPolicy.REPLACE_IN_PLACE
    separator: str = " "
    match: str | None = None
    section_end: str | None = None
    comment: str | None = None
    case_sensitive: bool = False

    @property
    def _flags(self) -> int:
        return 0 if self.case_sensitive else re.IGNORECASE

    def any_pattern(self) -> re.Pattern:
        """Pattern matching the directive whether commented out or not."""
        body = self.match or rf"{re.escape(self.key)}(?=\s|=|$)"
        return re.compile(rf"^\s*#?\s*{body}", self._flags)

    def active_pattern(self) -> re.Pattern:
        """Pattern matching only uncommented occurrences."""
        body = self.match or rf"{re.escape(self.key)}(?=\s|=|$)"
        return re.compile(rf"^\s*{body}", self._flags)

    def render(self) -> str:
        """Directive line as it should appear in the file."""
        return f"{self.key}{self.separator}{self.value}"


def _scope_end(lines: list[str], directive: Directive) -> int:
    """Index of the first line outside the directive's scope."""
    if not directive.section_end:
        return len(lines)
    boundary = re.compile(directive.section_end, re.IGNORECASE)
    for index, line in enumerate(lines):
        if boundary.match(line):
            return index
    return len(lines)


def _newline_of(lines: list[str]) -> str:
    for line in lines:
        if line.endswith("\r\n"):
            return "\r\n"
        if line.endswith("\n"):
            return "\n"
    return "\n"


def _line_ending(line: str) -> str:
    if line.endswith("\r\n"):
        return "\r\n"
    if line.endswith("\n"):
        return "\n"
    return ""


def _insert(lines: list[str], index: int, new_lines: list[str], newline: str) -> list[str]:
    """Insert ``new_lines`` at ``index``, keeping the file's line endings."""
    head = list(lines[:index])
    tail = lines[index:]
    if head and not _line_ending(head[-1]):
        head[-1] = head[-1] + newline
    block = [line + newline for line in new_lines]
    if not tail and not lines:
        return block
    if not tail and lines and not _line_ending(lines[-1]):
        # Original file had no trailing newline; do not invent one at the end.
        block[-1] = block[-1][: -len(newline)]
    return head + block + tail


def apply_directive(text: str, directive: Directive) -> str:
    """
    Return ``text`` with ``directive`` applied.

    Args:
        text: Current file content
        directive: Directive to apply

    Returns:
        New file content. Equal to ``text`` when the directive already holds.
    """
    if directive.policy is InsertionPolicy.REPLACE_WHOLE_BLOCK:
        return directive.value

    lines = text.splitlines(keepends=True)
    newline = _newline_of(lines)
    end = _scope_end(lines, directive)
    active = directive.active_pattern()
    rendered = directive.render()

    if directive.policy is InsertionPolicy.REMOVE:
        kept = [line for i, line in enumerate(lines) if i >= end or not active.match(line)]
        return "".join(kept)

    active_indexes = [i for i in range(end) if active.match(lines[i])]

    if directive.policy is InsertionPolicy.APPEND_IF_ABSENT:
        if active_indexes:
            return text
        block = ([directive.comment] if directive.comment else []) + [rendered]
        return "".join(_insert(lines, end, block, newline))

    # REPLACE_IN_PLACE
    if active_indexes:
        for i in active_indexes:
            lines[i] = rendered + _line_ending(lines[i])
        return "".join(lines)

    commented = directive.any_pattern()
    for i in range(end):
        if commented.match(lines[i]):
            lines[i] = rendered + _line_ending(lines[i])
            return "".join(lines)

    return "".join(_insert(lines, end, [rendered], newline))


def apply_directives(text: str, directives: list[Directive]) -> str:
    """Apply several directives in order."""
    for directive in directives:
        text = apply_directive(text, directive)
    return text


def find_active_value(text: str, directive: Directive) -> str | None:
    """
    Value of the last uncommented line matching ``directive`` within its scope.

    Returns:
        The value, or None when no active line matches
    """
    lines = text.splitlines()
    end = _scope_end(lines, directive)
    active = directive.active_pattern()
    value = None
    for line in lines[:end]:
        match = active.match(line)
        if match:
            rest = line[match.end():].strip()
            if rest.startswith("="):
                rest = rest[1:].strip()
            value = rest
    return value


def read_text(path: str | Path) -> str:
    """
    Read a config file, returning an empty string when it does not exist.

    Bytes that are not valid UTF-8 (e.g. Latin-1 comments) are carried as
    surrogate escapes so :func:`encode_text` writes them back unchanged.
    """
    path = Path(path)
    if not path.exists():
        return ""
    with open(path, encoding=CONFIG_ENCODING, errors=CONFIG_ERRORS, newline="") as f:
        return f.read()


def encode_text(text: str) -> bytes:
    return text.encode(CONFIG_ENCODING, errors=CONFIG_ERRORS)


@dataclass(frozen=True)
class ConfigTarget:
    """
    A configuration file that a routine inspects or mutates.

    Attributes:
        path: File location
        must_exist: Whether the file has to exist before mutation
        mode: Permission bits enforced after a write (None keeps the current mode)
        owner_uid: Owner enforced after a write (None keeps the current owner)
        owner_gid: Group enforced after a write (None keeps the current group)
    """

    path: Path
    must_exist: bool = True
    mode: int | None = None
    owner_uid: int | None = None
    owner_gid: int | None = None
