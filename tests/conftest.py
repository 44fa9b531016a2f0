"""Shared fixtures for the defensys test suite."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from defensys.audit import AuditLog
from defensys.authorization import AutoApprove, AutoDeny
from defensys.routines.base import RoutineContext
from defensys.settings import Settings


@pytest.fixture
def audit(tmp_path):
    log = AuditLog(tmp_path / "audit.log", echo=False)
    yield log
    log.close()


@pytest.fixture
def settings(tmp_path) -> Settings:
    settings = Settings()
    settings.audit_log = str(tmp_path / "audit.log")
    return settings


@pytest.fixture
def make_context(settings, audit):
    """Build a RoutineContext with mocked service and package collaborators."""

    def _make(approve: bool = True, dry_run: bool = False, privileged: bool = True) -> RoutineContext:
        return RoutineContext(
            settings=settings,
            audit=audit,
            authorization=AutoApprove() if approve else AutoDeny(),
            services=MagicMock(),
            packages=MagicMock(),
            dry_run=dry_run,
            privileged=privileged,
        )

    return _make
