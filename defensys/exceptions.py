"""
Custom exceptions for defensys.
"""


class HardeningError(Exception):
    """Base exception for hardening-related errors."""
    pass


class PreconditionError(HardeningError):
    """Raised when a routine cannot start: missing privilege, file or tool."""
    pass


class SettingsError(HardeningError):
    """Raised when the settings file cannot be loaded or is invalid."""
    pass


class TemplateError(HardeningError):
    """Raised when template processing fails."""
    pass


class BackupError(HardeningError):
    """Raised when a configuration snapshot cannot be written or read back."""
    pass


class ValidationError(HardeningError):
    """Raised when an edited configuration fails its syntax check."""
    pass


class ApplyError(HardeningError):
    """Raised when a service fails to restart or an apply command fails."""
    pass


class VerifyError(HardeningError):
    """Raised when the desired value is not in effect after a successful apply."""
    pass


class RollbackError(HardeningError):
    """
    Raised when restoring a snapshot or restarting the service with the
    restored configuration fails. Manual intervention is required.
    """
    pass
