"""
Tests for defensys/validators.py - configuration syntax validation.
"""

from unittest.mock import MagicMock, patch

import pytest

from defensys.validators import (
    ChronyValidator,
    KeyValueValidator,
    LogrotateValidator,
    NullValidator,
    PamValidator,
    SshdValidator,
    SysctlValidator,
    get_validator,
)


def completed(returncode=0, stdout="", stderr=""):
    result = MagicMock()
    result.returncode = returncode
    result.stdout = stdout
    result.stderr = stderr
    return result


class TestCommandValidators:
    def test_sshd_passes(self, tmp_path):
        path = tmp_path / "sshd_config"
        with patch("subprocess.run", return_value=completed(0)) as mock_run:
            report = SshdValidator().validate(path)
        assert report.passed
        assert mock_run.call_args[0][0] == ["sshd", "-t", "-f", str(path)]

    def test_sshd_failure_keeps_diagnostics(self, tmp_path):
        error = f"{tmp_path}/sshd_config line 3: Bad configuration option: LoginGraceTme"
        with patch("subprocess.run", return_value=completed(255, "", error)):
            report = SshdValidator().validate(tmp_path / "sshd_config")
        assert not report.passed
        assert "Bad configuration option" in report.summary

    def test_missing_tool_is_a_failure(self, tmp_path):
        with patch("subprocess.run", side_effect=FileNotFoundError("chronyd")):
            report = ChronyValidator().validate(tmp_path / "chrony.conf")
        assert not report.passed
        assert "chronyd" in report.summary

    def test_logrotate_error_lines_fail_despite_exit_zero(self, tmp_path):
        output = "reading config file secure-logs\nerror: secure-logs:3 unknown option 'wekly'\n"
        with patch("subprocess.run", return_value=completed(0, "", output)):
            report = LogrotateValidator().validate(tmp_path / "secure-logs")
        assert not report.passed
        assert report.diagnostics == ["error: secure-logs:3 unknown option 'wekly'"]

    def test_logrotate_clean_output_passes(self, tmp_path):
        with patch("subprocess.run", return_value=completed(0, "", "reading config file secure-logs\n")):
            assert LogrotateValidator().validate(tmp_path / "secure-logs").passed


class TestKeyValueValidator:
    def test_accepts_both_separators_and_bare_flags(self, tmp_path):
        path = tmp_path / "pwquality.conf"
        path.write_text("# comment\nminlen = 14\nPASS_MAX_DAYS\t90\nenforce_for_root\n\n")
        assert KeyValueValidator().validate(path).passed

    def test_rejects_garbage_line(self, tmp_path):
        path = tmp_path / "login.defs"
        path.write_text("PASS_MAX_DAYS 90\n= 5\n")
        report = KeyValueValidator().validate(path)
        assert not report.passed
        assert report.diagnostics[0].startswith("line 2")


class TestSysctlValidator:
    @pytest.fixture
    def proc_sys(self, tmp_path):
        root = tmp_path / "proc_sys"
        (root / "net" / "ipv4").mkdir(parents=True)
        (root / "net" / "ipv4" / "tcp_syncookies").write_text("1\n")
        return root

    def test_known_key_passes(self, tmp_path, proc_sys):
        path = tmp_path / "99.conf"
        path.write_text("# header\nnet.ipv4.tcp_syncookies = 1\n")
        assert SysctlValidator(proc_sys).validate(path).passed

    def test_unknown_key_fails(self, tmp_path, proc_sys):
        path = tmp_path / "99.conf"
        path.write_text("net.ipv4.tcp_synccokies=1\n")
        report = SysctlValidator(proc_sys).validate(path)
        assert not report.passed
        assert "unknown kernel parameter" in report.summary

    def test_missing_assignment_fails(self, tmp_path, proc_sys):
        path = tmp_path / "99.conf"
        path.write_text("net.ipv4.tcp_syncookies\n")
        assert not SysctlValidator(proc_sys).validate(path).passed


class TestPamValidator:
    def test_valid_stack(self, tmp_path):
        path = tmp_path / "system-auth"
        path.write_text(
            "auth        required      pam_env.so\n"
            "password    requisite     pam_pwquality.so retry=3\n"
            "password    [success=1 default=ignore] pam_unix.so obscure use_authtok\n"
            "-session    optional      pam_systemd.so\n"
            "@include common-password\n"
        )
        assert PamValidator().validate(path).passed

    @pytest.mark.parametrize(
        "line,message",
        [
            ("pasword required pam_unix.so", "unknown module type"),
            ("password", "missing control field"),
            ("password required", "missing module path"),
            ("password [success=1 pam_unix.so", "unterminated control field"),
        ],
    )
    def test_broken_lines(self, tmp_path, line, message):
        path = tmp_path / "system-auth"
        path.write_text(line + "\n")
        report = PamValidator().validate(path)
        assert not report.passed
        assert message in report.summary


class TestRegistry:
    def test_lookup(self):
        assert isinstance(get_validator("none"), NullValidator)
        assert isinstance(get_validator("sshd"), SshdValidator)

    def test_unknown_type(self):
        with pytest.raises(ValueError):
            get_validator("nginx")
