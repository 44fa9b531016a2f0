"""
Compliance policies.

A policy decides whether a resolved value satisfies a hardening rule. An
unknown value (None) never satisfies a policy that expects a value.
"""

import re

_DURATION_UNITS = {"": 1, "s": 1, "m": 60, "h": 3600, "d": 86400, "w": 604800}
_DURATION_PART = re.compile(r"(\d+)([smhdw]?)", re.IGNORECASE)

INSECURE_SENTINELS = ("0", "infinite", "infinity", "none", "unlimited")


def parse_duration(value: str) -> int:
    """
    Parse an sshd-style time value (``60``, ``2m``, ``1h30m``) to seconds.

    Raises:
        ValueError: If ``value`` is not a duration
    """
    text = value.strip()
    if not text:
        raise ValueError("empty duration")
    position = 0
    total = 0
    for match in _DURATION_PART.finditer(text):
        if match.start() != position:
            raise ValueError(f"invalid duration: {value!r}")
        total += int(match.group(1)) * _DURATION_UNITS[match.group(2).lower()]
        position = match.end()
    if position != len(text):
        raise ValueError(f"invalid duration: {value!r}")
    return total


def _normalize(value: str) -> str:
    return " ".join(value.split())


class Policy:
    """Base class for compliance policies."""

    def check(self, value: str | None) -> bool:
        raise NotImplementedError("Subclasses must implement check()")

    def describe(self) -> str:
        return self.__class__.__name__


class ExactMatch(Policy):
    """
    Value must equal ``expected`` (whitespace-normalized).

    Args:
        expected: Required value
        ordered: When False, compare as sets of whitespace-separated words
        case_sensitive: Whether comparison is case sensitive
    """

    def __init__(self, expected: str, ordered: bool = True, case_sensitive: bool = True):
        self.expected = str(expected)
        self.ordered = ordered
        self.case_sensitive = case_sensitive

    def _prepare(self, value: str) -> str:
        return value if self.case_sensitive else value.lower()

    def check(self, value: str | None) -> bool:
        if value is None:
            return False
        actual = self._prepare(_normalize(value))
        expected = self._prepare(_normalize(self.expected))
        if self.ordered:
            return actual == expected
        return set(actual.split()) == set(expected.split())

    def describe(self) -> str:
        return f"equal to '{self.expected}'"


class NumericRange(Policy):
    """
    Value must satisfy ``minimum < value <= maximum``.

    Sentinel values such as ``0`` (meaning "infinite" for timeouts) are
    rejected even though they are numerically within any ceiling.
    """

    def __init__(
        self,
        maximum: int,
        minimum: int = 0,
        sentinels: tuple = INSECURE_SENTINELS,
        durations: bool = True,
    ):
        self.maximum = maximum
        self.minimum = minimum
        self.sentinels = tuple(s.lower() for s in sentinels)
        self.durations = durations

    def check(self, value: str | None) -> bool:
        if value is None:
            return False
        text = value.strip().lower()
        if text in self.sentinels:
            return False
        try:
            number = parse_duration(text) if self.durations else int(text)
        except ValueError:
            return False
        return self.minimum < number <= self.maximum

    def describe(self) -> str:
        return f"between {self.minimum + 1} and {self.maximum}"


class PermissionCeiling(Policy):
    """
    File mode must not exceed ``ceiling``.

    Modes are compared as the integer value of the octal digits
    (``int(mode, 8) <= int(ceiling, 8)``), not as a bitwise subset: 640 is
    not compliant with a ceiling of 600.
    """

    def __init__(self, ceiling: str):
        self.ceiling = str(ceiling)

    def check(self, value: str | None) -> bool:
        if value is None:
            return False
        try:
            return int(value, 8) <= int(self.ceiling, 8)
        except ValueError:
            return False

    def describe(self) -> str:
        return f"mode {self.ceiling} or less"


class OwnershipPolicy(Policy):
    """Value ``"<uid>:<gid>"`` must match the expected owner and group exactly."""

    def __init__(self, uid: int, gid: int):
        self.uid = uid
        self.gid = gid

    def check(self, value: str | None) -> bool:
        if value is None:
            return False
        uid, _, gid = value.partition(":")
        try:
            return int(uid) == self.uid and int(gid) == self.gid
        except ValueError:
            return False

    def describe(self) -> str:
        return f"owned by {self.uid}:{self.gid}"


class Present(Policy):
    """Any value at all."""

    def check(self, value: str | None) -> bool:
        return value is not None

    def describe(self) -> str:
        return "present"


class Absent(Policy):
    """No value at all."""

    def check(self, value: str | None) -> bool:
        return value is None or not value.strip()

    def describe(self) -> str:
        return "absent"


class AllOf(Policy):
    """Every sub-policy must hold for the same value."""

    def __init__(self, *policies: Policy):
        self.policies = policies

    def check(self, value: str | None) -> bool:
        return all(policy.check(value) for policy in self.policies)

    def describe(self) -> str:
        return " and ".join(policy.describe() for policy in self.policies)


def is_compliant(value: str | None, policy: Policy) -> bool:
    """Whether ``value`` satisfies ``policy``."""
    return policy.check(value)
