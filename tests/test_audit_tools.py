"""
Tests for the audit-tool routines: AIDE, Lynis and OpenSCAP.
"""

from unittest.mock import MagicMock, patch

import pytest

from defensys.exceptions import PreconditionError
from defensys.routines import aide, lynis, openscap

LYNIS_OUTPUT = """[+] Boot and services
  - Checking UEFI boot                                        [ \x1b[1;37mDISABLED\x1b[0m ]
  - Checking presence GRUB2                                   [ \x1b[1;32mFOUND\x1b[0m ]
    - Checking for password protection                        [ \x1b[1;31mNONE\x1b[0m ]
  - Check startup files (permissions)                         [ \x1b[1;32mOK\x1b[0m ]
  - sshd.service:                                             [ \x1b[1;31mUNSAFE\x1b[0m ]

  Warnings (1):
  ----------------------------
  ! Warning: Found one or more vulnerable packages. [PKGS-7392]

  Suggestions (2):
  ----------------------------
  * Suggestion: Set a password on GRUB boot loader [BOOT-5122]
  * Suggestion: Install a PAM module for password strength testing [AUTH-9262]
"""


def completed(returncode=0, stdout="", stderr=""):
    result = MagicMock()
    result.returncode = returncode
    result.stdout = stdout
    result.stderr = stderr
    return result


class TestAideExitCodes:
    @pytest.mark.parametrize(
        "code,verdict",
        [(0, "clean"), (1, "changed"), (4, "changed"), (7, "changed"), (14, "error"), (17, "error")],
    )
    def test_interpret(self, code, verdict):
        assert aide.interpret_check_exit(code) == verdict


class TestAideDatabase:
    def test_setup_check_log_permissions(self, tmp_path):
        path = aide.setup_check_log(tmp_path / "aide")
        assert (tmp_path / "aide").stat().st_mode & 0o777 == 0o700
        assert path.stat().st_mode & 0o777 == 0o600

    def test_initialize_moves_new_database(self, make_context, audit, tmp_path):
        rc = make_context()
        rc.settings.aide.database = str(tmp_path / "aide.db.gz")
        rc.settings.aide.new_database = str(tmp_path / "aide.db.new.gz")

        def fake_init(cmd, **kwargs):
            (tmp_path / "aide.db.new.gz").write_bytes(b"db")
            return completed(0, "AIDE initialized database")

        with patch("subprocess.run", side_effect=fake_init):
            aide.initialize_database(rc, audit)

        database = tmp_path / "aide.db.gz"
        assert database.read_bytes() == b"db"
        assert database.stat().st_mode & 0o777 == 0o600
        assert not (tmp_path / "aide.db.new.gz").exists()

    def test_initialize_without_new_database(self, make_context, audit, tmp_path):
        rc = make_context()
        rc.settings.aide.database = str(tmp_path / "aide.db.gz")
        rc.settings.aide.new_database = str(tmp_path / "aide.db.new.gz")
        with patch("subprocess.run", return_value=completed(0)):
            with pytest.raises(PreconditionError, match="not found"):
                aide.initialize_database(rc, audit)

    def test_check_reports_changes_without_failing(self, make_context, audit, tmp_path):
        rc = make_context()
        database = tmp_path / "aide.db.gz"
        database.write_bytes(b"db")
        rc.settings.aide.database = str(database)
        with patch("subprocess.run", return_value=completed(5, "changed: /etc/passwd")):
            assert aide.run_check(rc, audit) == 0

    def test_check_error(self, make_context, audit, tmp_path):
        rc = make_context()
        database = tmp_path / "aide.db.gz"
        database.write_bytes(b"db")
        rc.settings.aide.database = str(database)
        with patch("subprocess.run", return_value=completed(17, "", "Invalid configuration")):
            assert aide.run_check(rc, audit) == 1


class TestLynisExtraction:
    def test_warnings(self):
        warnings = lynis.extract_warnings(LYNIS_OUTPUT)
        assert "[ UNSAFE ]" in warnings[0]
        assert "Found one or more vulnerable packages. [PKGS-7392]" in warnings

    def test_suggestions(self):
        assert lynis.extract_suggestions(LYNIS_OUTPUT) == [
            "Set a password on GRUB boot loader [BOOT-5122]",
            "Install a PAM module for password strength testing [AUTH-9262]",
        ]

    def test_no_ansi_codes_survive(self):
        assert not any("\x1b" in line for line in lynis.extract_warnings(LYNIS_OUTPUT))


class TestOpenscap:
    def test_prefers_datastream(self, tmp_path):
        (tmp_path / "ssg-rhel9-xccdf.xml").write_text("")
        (tmp_path / "ssg-rhel9-ds.xml").write_text("")
        assert openscap.find_scap_content(tmp_path).name == "ssg-rhel9-ds.xml"

    def test_no_content(self, tmp_path):
        assert openscap.find_scap_content(tmp_path / "missing") is None

    def test_usb_blacklist_is_appended_once(self, make_context, tmp_path):
        blacklist = tmp_path / "usb-storage-blacklist.conf"
        rc = make_context()
        rc.settings.openscap.usb_blacklist_file = str(blacklist)

        assert openscap.blacklist_usb_storage(rc) == 0
        assert openscap.blacklist_usb_storage(rc) == 0

        assert blacklist.read_text().count(openscap.USB_BLACKLIST_LINE) == 1

    def test_scan_treats_failed_rules_as_completed(self, make_context, tmp_path, monkeypatch):
        content = tmp_path / "content" / "ssg-rhel9-ds.xml"
        content.parent.mkdir()
        content.write_text("")
        reports = tmp_path / "reports"
        reports.mkdir()
        rc = make_context()
        rc.settings.openscap.content_dir = str(content.parent)
        rc.settings.openscap.report_dir = str(reports)
        rc.settings.openscap.profile = "xccdf_org.ssgproject.content_profile_cis"
        monkeypatch.setattr(openscap, "report_owner_dir", lambda: (tmp_path, None))

        def fake_oscap(cmd, **kwargs):
            html = cmd[cmd.index("--report") + 1]
            with open(html, "w") as f:
                f.write("<html/>")
            return completed(2)

        with patch("subprocess.run", side_effect=fake_oscap) as mock_run:
            assert openscap.scan(rc) == 0

        command = mock_run.call_args[0][0]
        assert command[:5] == ["oscap", "xccdf", "eval", "--profile", "xccdf_org.ssgproject.content_profile_cis"]
        assert command[-1] == str(content)
        assert len(list(tmp_path.glob("system_compliance_report_*.html"))) == 1

    def test_scan_failure(self, make_context, tmp_path):
        content = tmp_path / "ssg-rhel9-ds.xml"
        content.write_text("")
        rc = make_context()
        rc.settings.openscap.content_dir = str(tmp_path)
        rc.settings.openscap.report_dir = str(tmp_path)
        rc.settings.openscap.profile = "xccdf_org.ssgproject.content_profile_standard"
        with patch("subprocess.run", return_value=completed(1, "", "OpenSCAP Error")):
            assert openscap.scan(rc) == 1

    def test_declined_usb_blacklist(self, make_context, tmp_path):
        rc = make_context(approve=False)
        rc.settings.openscap.usb_blacklist_file = str(tmp_path / "blacklist.conf")
        assert openscap.blacklist_usb_storage(rc) == 1
        assert not (tmp_path / "blacklist.conf").exists()
