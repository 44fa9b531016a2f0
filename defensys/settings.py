"""
Settings for defensys routines.

Defaults mirror the CIS-oriented values every routine ships with. A YAML
file can override any of them, one section per routine::

    audit_log: /var/log/security_hardening.log
    restart_timeout: 5
    ssh:
      login_grace_time: 45
      allowed_users: [admin, deploy]
    chrony:
      pool: 2.rhel.pool.ntp.org
"""

import logging
import os
from dataclasses import dataclass, field, fields, is_dataclass
from pathlib import Path
from typing import Any

import yaml

from defensys.exceptions import SettingsError

logger = logging.getLogger(__name__)

ENV_CONFIG = "DEFENSYS_CONFIG"


@dataclass
class SshSettings:
    config_file: str = "/etc/ssh/sshd_config"
    service: str = "sshd"
    login_grace_time: int = 60
    client_alive_interval: int = 300
    client_alive_count_max: int = 0
    allowed_users: list = field(default_factory=list)


@dataclass
class PasswordPolicySettings:
    pwquality_conf: str = "/etc/security/pwquality.conf"
    login_defs: str = "/etc/login.defs"
    pam_files: list = field(
        default_factory=lambda: ["/etc/pam.d/system-auth", "/etc/pam.d/password-auth"]
    )
    minlen: int = 14
    dcredit: int = -1
    ucredit: int = -1
    lcredit: int = -1
    ocredit: int = -1
    minclass: int = 4
    maxrepeat: int = 2
    maxclassrepeat: int = 4
    difok: int = 8
    gecoscheck: int = 1
    reject_username: int = 1
    enforce_for_root: int = 1
    remember: int = 5
    pass_max_days: int = 90
    pass_min_days: int = 7
    pass_warn_age: int = 14
    inactive_lock_days: int = 35


@dataclass
class SysctlSettings:
    config_file: str = "/etc/sysctl.d/99-network-hardening.conf"
    parameters: dict = field(
        default_factory=lambda: {
            "net.ipv4.tcp_syncookies": "1",
            "net.ipv4.tcp_max_syn_backlog": "4096",
            "net.ipv4.tcp_synack_retries": "2",
            "net.ipv4.icmp_echo_ignore_broadcasts": "1",
            "net.ipv4.icmp_ignore_bogus_error_responses": "1",
            "net.ipv4.conf.all.rp_filter": "1",
            "net.ipv4.conf.default.rp_filter": "1",
            "net.ipv4.conf.all.log_martians": "1",
            "net.ipv4.conf.default.log_martians": "1",
            "net.ipv4.conf.all.accept_source_route": "0",
            "net.ipv4.conf.default.accept_source_route": "0",
            "net.ipv4.conf.all.accept_redirects": "0",
            "net.ipv4.conf.default.accept_redirects": "0",
            "net.ipv4.conf.all.send_redirects": "0",
            "net.ipv4.conf.default.send_redirects": "0",
        }
    )


@dataclass
class GrubSettings:
    files: dict = field(
        default_factory=lambda: {
            "/boot/grub2/grub.cfg": "600",
            "/boot/grub2/grubenv": "600",
            "/boot/grub2/user.cfg": "600",
            "/boot/grub/grub.cfg": "600",
            "/boot/efi/EFI/redhat/grub.cfg": "600",
            "/boot/efi/EFI/centos/grub.cfg": "600",
            "/boot/efi/EFI/fedora/grub.cfg": "600",
            "/boot/efi/EFI/ubuntu/grub.cfg": "600",
            "/boot/efi/EFI/debian/grub.cfg": "600",
            "/boot/efi/EFI/grub/grub.cfg": "600",
        }
    )
    owner_uid: int = 0
    owner_gid: int = 0


@dataclass
class LogrotateSettings:
    config_file: str = "/etc/logrotate.d/secure-logs"
    target_log: str = "/var/log/secure"
    frequency: str = "weekly"
    rotate: int = 4
    hup_services: list = field(default_factory=lambda: ["rsyslogd", "auditd"])


@dataclass
class ChronySettings:
    config_file: str = "/etc/chrony.conf"
    pool: str = "pool.ntp.org"
    settle_seconds: float = 5.0


@dataclass
class Fail2banSettings:
    jail_file: str = "/etc/fail2ban/jail.d/sshd.local"
    max_retry: int = 3
    find_time: str = "10m"
    ban_time: str = "1h"
    ignore_ips: list = field(default_factory=lambda: ["127.0.0.1/8", "::1"])


@dataclass
class SelinuxSettings:
    config_file: str = "/etc/selinux/config"
    report_dir: str = "/var/log"


@dataclass
class AideSettings:
    log_dir: str = "/var/log/aide"
    database: str = "/var/lib/aide/aide.db.gz"
    new_database: str = "/var/lib/aide/aide.db.new.gz"


@dataclass
class OpenscapSettings:
    content_dir: str = "/usr/share/xml/scap/ssg/content"
    usb_blacklist_file: str = "/etc/modprobe.d/usb-storage-blacklist.conf"
    report_dir: str = "/tmp"
    profile: str = ""


@dataclass
class ProcessAuditSettings:
    log_dir: str = "/var/log"


@dataclass
class PwnedSettings:
    api_url: str = "https://api.pwnedpasswords.com/range/"
    user_agent: str = "defensys-pwned-check/1.0"
    timeout: float = 10.0


@dataclass
class Settings:
    audit_log: str = "/var/log/security_hardening.log"
    restart_timeout: float = 5.0
    ssh: SshSettings = field(default_factory=SshSettings)
    password_policy: PasswordPolicySettings = field(default_factory=PasswordPolicySettings)
    sysctl: SysctlSettings = field(default_factory=SysctlSettings)
    grub: GrubSettings = field(default_factory=GrubSettings)
    logrotate: LogrotateSettings = field(default_factory=LogrotateSettings)
    chrony: ChronySettings = field(default_factory=ChronySettings)
    fail2ban: Fail2banSettings = field(default_factory=Fail2banSettings)
    selinux: SelinuxSettings = field(default_factory=SelinuxSettings)
    aide: AideSettings = field(default_factory=AideSettings)
    openscap: OpenscapSettings = field(default_factory=OpenscapSettings)
    process_audit: ProcessAuditSettings = field(default_factory=ProcessAuditSettings)
    pwned: PwnedSettings = field(default_factory=PwnedSettings)


def _search_paths() -> list[Path]:
    paths = []
    if os.environ.get(ENV_CONFIG):
        paths.append(Path(os.environ[ENV_CONFIG]))
    paths.extend(
        [
            Path.home() / ".defensys" / "config.yaml",
            Path("/etc/defensys/config.yaml"),
        ]
    )
    return paths


def _merge(target: Any, data: dict, section: str) -> None:
    """Overlay ``data`` onto dataclass ``target`` in place."""
    known = {f.name for f in fields(target)}
    for key, value in data.items():
        if key not in known:
            where = f"{section}.{key}" if section else key
            raise SettingsError(f"Unknown setting: {where}")
        current = getattr(target, key)
        if is_dataclass(current):
            if not isinstance(value, dict):
                raise SettingsError(f"Section '{key}' must be a mapping")
            _merge(current, value, key)
        else:
            setattr(target, key, value)


def load_settings(path: str | Path | None = None) -> Settings:
    """
    Load settings, overlaying the first YAML file found on the defaults.

    Args:
        path: Explicit settings file. When given it must exist.

    Returns:
        Populated Settings instance

    Raises:
        SettingsError: If the file cannot be read or contains unknown keys
    """
    settings = Settings()

    if path is not None:
        candidate = Path(path)
        if not candidate.exists():
            raise SettingsError(f"Settings file not found: {candidate}")
    else:
        candidate = next((p for p in _search_paths() if p.exists()), None)
        if candidate is None:
            logger.debug("No settings file found, using defaults")
            return settings

    try:
        with open(candidate) as f:
            data = yaml.safe_load(f) or {}
    except OSError as e:
        raise SettingsError(f"Failed to read settings file {candidate}: {e}") from e
    except yaml.YAMLError as e:
        raise SettingsError(f"Failed to parse settings file {candidate}: {e}") from e

    if not isinstance(data, dict):
        raise SettingsError(f"Settings file {candidate} must contain a mapping")

    _merge(settings, data, "")
    logger.debug("Loaded settings from %s", candidate)
    return settings
