"""
Defensys - Linux host hardening toolkit.

Each routine inspects one piece of host configuration and, when asked to,
remediates it through a backup / edit / validate / apply / verify / rollback
sequence driven by :class:`defensys.engine.MutationEngine`.
"""

from defensys.branding import VERSION

__version__ = VERSION

__all__ = ["__version__"]
