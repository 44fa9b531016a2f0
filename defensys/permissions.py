"""
File permission and ownership auditing.

Checks sensitive files (bootloader configuration, databases) against a
maximum mode and an expected owner, and fixes them on request.
"""

import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from defensys.compliance import PermissionCeiling

logger = logging.getLogger(__name__)


class PermissionStatus(Enum):
    SECURE = "secure"
    INSECURE = "insecure"
    MISSING = "missing"
    ERROR = "error"


@dataclass
class PermissionFinding:
    """Result of checking one file."""

    path: Path
    status: PermissionStatus
    mode: str | None = None
    uid: int | None = None
    gid: int | None = None
    reasons: list = field(default_factory=list)

    @property
    def needs_fix(self) -> bool:
        return self.status is PermissionStatus.INSECURE


class PermissionAuditor:
    """
    Auditor for files that must not be more permissive than a ceiling.

    Args:
        owner_uid: Required owner
        owner_gid: Required group
    """

    def __init__(self, owner_uid: int = 0, owner_gid: int = 0):
        self.owner_uid = owner_uid
        self.owner_gid = owner_gid

    def check_file(self, filepath: str | Path, ceiling: str) -> PermissionFinding:
        """
        Check one file. Symlinks are followed.

        Args:
            filepath: File to check
            ceiling: Maximum permitted mode as octal digits, e.g. ``"600"``
        """
        path = Path(filepath)
        if not os.path.lexists(path):
            return PermissionFinding(path, PermissionStatus.MISSING)
        try:
            st = path.stat()
        except OSError as e:
            logger.warning(f"Cannot stat {path}: {e}")
            return PermissionFinding(path, PermissionStatus.ERROR, reasons=[str(e)])

        mode = format(st.st_mode & 0o777, "o")
        reasons = []
        policy = PermissionCeiling(ceiling)
        if not policy.check(mode):
            reasons.append(f"permissions '{mode}' are too permissive (expected '{ceiling}' or less)")
        if st.st_uid != self.owner_uid:
            reasons.append(f"owner UID is '{st.st_uid}' (expected '{self.owner_uid}')")
        if st.st_gid != self.owner_gid:
            reasons.append(f"group GID is '{st.st_gid}' (expected '{self.owner_gid}')")

        status = PermissionStatus.INSECURE if reasons else PermissionStatus.SECURE
        return PermissionFinding(path, status, mode, st.st_uid, st.st_gid, reasons)

    def scan(self, files: dict[str, str]) -> list[PermissionFinding]:
        """Check every ``path -> ceiling`` pair."""
        return [self.check_file(path, ceiling) for path, ceiling in files.items()]

    def fix_file(self, filepath: str | Path, ceiling: str) -> PermissionFinding:
        """
        Set owner/group, lower the mode to ``ceiling`` if it is more
        permissive, then re-check. A stricter mode is kept.

        Returns:
            The finding after the fix. INSECURE or ERROR means the fix did not hold.
        """
        path = Path(filepath)
        try:
            os.chown(path, self.owner_uid, self.owner_gid)
            mode = format(path.stat().st_mode & 0o777, "o")
            if not PermissionCeiling(ceiling).check(mode):
                os.chmod(path, int(ceiling, 8))
        except OSError as e:
            logger.error(f"Failed to fix permissions on {path}: {e}")
            return PermissionFinding(path, PermissionStatus.ERROR, reasons=[str(e)])
        return self.check_file(path, ceiling)
