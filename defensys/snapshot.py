"""
Whole-file configuration snapshots.

A snapshot is taken before the first byte of a configuration file changes.
It is written next to the original as ``<path>.bak.<timestamp>``, read back
and compared before the caller may proceed, and can restore the original
bytes, mode and ownership exactly.
"""

import logging
import os
import shutil
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from defensys.exceptions import BackupError

BACKUP_TIMESTAMP_FORMAT = "%Y-%m-%d_%H:%M:%S"
BACKUP_MARKER = ".bak."

logger = logging.getLogger(__name__)


def atomic_write(
    path: Path,
    data: bytes,
    mode: int | None = None,
    uid: int | None = None,
    gid: int | None = None,
) -> None:
    """
    Replace ``path`` with ``data`` via a temporary file in the same directory.
    A symlinked ``path`` stays a symlink; the file it points to is replaced.

    Args:
        path: File to write
        data: New content
        mode: Permission bits to set, if any
        uid: Owner to set, if any
        gid: Group to set, if any
    """
    path = Path(path).resolve()
    tmp_path = path.with_name(f".{path.name}.defensys-tmp")
    try:
        with open(tmp_path, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        if mode is not None:
            os.chmod(tmp_path, mode)
        if uid is not None or gid is not None:
            os.chown(tmp_path, -1 if uid is None else uid, -1 if gid is None else gid)
        os.replace(tmp_path, path)
    finally:
        if tmp_path.exists():
            tmp_path.unlink()


@dataclass(frozen=True)
class ConfigSnapshot:
    """
    Immutable backup of a configuration file.

    Attributes:
        target_path: File the snapshot was taken from
        backup_path: Backup artifact on disk (None when the target did not exist)
        created_at: Creation time
        content: Full original content
        mode: Original permission bits
        uid: Original owner
        gid: Original group
        existed: Whether the target existed when the snapshot was taken
    """

    target_path: Path
    backup_path: Path | None
    created_at: datetime
    content: bytes
    mode: int | None
    uid: int | None
    gid: int | None
    existed: bool

    @classmethod
    def take(cls, target_path: str | Path, now: datetime | None = None) -> "ConfigSnapshot":
        """
        Snapshot ``target_path``.

        Raises:
            BackupError: If the backup cannot be written or does not read back
                identical to the original
        """
        target = Path(target_path)
        created_at = now or datetime.now()

        if not target.exists():
            logger.debug("Snapshot of absent file %s", target)
            return cls(target, None, created_at, b"", None, None, None, existed=False)

        try:
            content = target.read_bytes()
            st = target.stat()
            backup_path = cls._create_backup(target, content, created_at)
            shutil.copystat(target, backup_path)
            if backup_path.read_bytes() != content:
                raise BackupError(f"Backup {backup_path} does not match {target}")
        except BackupError:
            raise
        except OSError as e:
            raise BackupError(f"Failed to back up {target}: {e}") from e

        logger.debug("Backed up %s to %s", target, backup_path)
        return cls(
            target,
            backup_path,
            created_at,
            content,
            st.st_mode & 0o7777,
            st.st_uid,
            st.st_gid,
            existed=True,
        )

    @staticmethod
    def _create_backup(target: Path, content: bytes, created_at: datetime) -> Path:
        """Write ``content`` to a new, never-overwritten backup artifact."""
        base = f"{target}{BACKUP_MARKER}{created_at.strftime(BACKUP_TIMESTAMP_FORMAT)}"
        candidate = Path(base)
        counter = 0
        while True:
            try:
                with open(candidate, "xb") as f:
                    f.write(content)
                    f.flush()
                    os.fsync(f.fileno())
                return candidate
            except FileExistsError:
                counter += 1
                candidate = Path(f"{base}.{counter}")

    def restore(self) -> None:
        """
        Put the original file back exactly as it was.

        Raises:
            BackupError: If the target cannot be restored
        """
        target = self.target_path
        try:
            if not self.existed:
                if target.exists():
                    target.unlink()
                return
            atomic_write(target, self.content, self.mode, self.uid, self.gid)
            if target.read_bytes() != self.content:
                raise BackupError(f"Restored {target} does not match snapshot")
        except BackupError:
            raise
        except OSError as e:
            raise BackupError(f"Failed to restore {target}: {e}") from e
        logger.debug("Restored %s from snapshot", target)


def list_backups(target_path: str | Path) -> list[Path]:
    """All backup artifacts of ``target_path``, oldest first."""
    target = Path(target_path)
    if not target.parent.exists():
        return []
    prefix = f"{target.name}{BACKUP_MARKER}"
    return sorted(p for p in target.parent.iterdir() if p.name.startswith(prefix))
