"""
Tests for defensys/resolvers.py - effective-value resolution.
"""

from pathlib import Path
from unittest.mock import MagicMock, patch

from defensys.directives import ConfigTarget, Directive
from defensys.resolvers import (
    EffectiveValueResolver,
    FileContentResolver,
    FileResolver,
    SshdResolver,
    SysctlResolver,
    ValueSource,
    parse_sshd_test_output,
    parse_sysctl_value,
)


def completed(returncode=0, stdout="", stderr=""):
    result = MagicMock()
    result.returncode = returncode
    result.stdout = stdout
    result.stderr = stderr
    return result


SSHD_T_OUTPUT = """port 22
logingracetime 60
clientaliveinterval 300
clientalivecountmax 0
allowusers admin
allowusers deploy
permitrootlogin no
"""


class TestParsers:
    def test_sshd_output_is_lowercase_keyed(self):
        values = parse_sshd_test_output(SSHD_T_OUTPUT)
        assert values["logingracetime"] == "60"
        assert values["permitrootlogin"] == "no"

    def test_repeated_keywords_are_joined(self):
        assert parse_sshd_test_output(SSHD_T_OUTPUT)["allowusers"] == "admin deploy"

    def test_sysctl_value_collapses_whitespace(self):
        assert parse_sysctl_value("4096\t87380\t6291456\n") == "4096 87380 6291456"


class TestFallbackChain:
    def test_file_then_default_then_unknown(self, tmp_path):
        path = tmp_path / "login.defs"
        path.write_text("PASS_MAX_DAYS 99999\n")
        target = ConfigTarget(path)
        resolver = FileResolver(defaults={"PASS_MIN_DAYS": "0"})

        from_file = resolver.resolve(target, Directive("PASS_MAX_DAYS"))
        from_default = resolver.resolve(target, Directive("PASS_MIN_DAYS"))
        unknown = resolver.resolve(target, Directive("PASS_WARN_AGE"))

        assert (from_file.value, from_file.source) == ("99999", ValueSource.FILE)
        assert (from_default.value, from_default.source) == ("0", ValueSource.DEFAULT)
        assert unknown.value is None and unknown.source is ValueSource.UNKNOWN
        assert not unknown.known

    def test_base_resolver_records_missing_tool(self, tmp_path):
        path = tmp_path / "conf"
        path.write_text("")
        resolved = EffectiveValueResolver().resolve(ConfigTarget(path), Directive("X"))
        assert resolved.source is ValueSource.UNKNOWN
        assert resolved.tool_error == "no test facility"


class TestFileContentResolver:
    def test_whole_file(self, tmp_path):
        path = tmp_path / "sshd.local"
        path.write_text("[sshd]\nenabled = true\n")
        resolved = FileContentResolver().resolve(ConfigTarget(path), Directive("sshd.local"))
        assert resolved.value == "[sshd]\nenabled = true\n"

    def test_absent_file_is_unknown(self, tmp_path):
        resolved = FileContentResolver().resolve(ConfigTarget(tmp_path / "x"), Directive("x"))
        assert resolved.source is ValueSource.UNKNOWN


class TestSshdResolver:
    def _run(self, sshd_result):
        def fake_run(cmd, **kwargs):
            if cmd[0] == "hostname":
                return completed(0, "192.0.2.10 fe80::1\n")
            return sshd_result

        return fake_run

    def test_effective_value_wins_over_file(self, tmp_path):
        path = tmp_path / "sshd_config"
        path.write_text("LoginGraceTime 120\n")
        with patch("subprocess.run", side_effect=self._run(completed(0, SSHD_T_OUTPUT))) as mock_run:
            resolved = SshdResolver().resolve(ConfigTarget(path), Directive("LoginGraceTime"))

        assert resolved.value == "60"
        assert resolved.source is ValueSource.EFFECTIVE
        sshd_cmd = mock_run.call_args_list[-1][0][0]
        assert sshd_cmd[:4] == ["sshd", "-T", "-f", str(path)]
        assert "user=root" in sshd_cmd
        assert "addr=192.0.2.10" in sshd_cmd

    def test_tool_failure_falls_back_to_file(self, tmp_path):
        path = tmp_path / "sshd_config"
        path.write_text("LoginGraceTime 120\n")
        failing = completed(255, "", "Bad configuration option: Foo")
        with patch("subprocess.run", side_effect=self._run(failing)):
            resolved = SshdResolver().resolve(ConfigTarget(path), Directive("LoginGraceTime"))

        assert resolved.value == "120"
        assert resolved.source is ValueSource.FILE
        assert "Bad configuration option" in resolved.tool_error

    def test_missing_sshd_binary(self, tmp_path):
        path = tmp_path / "sshd_config"
        path.write_text("")

        def fake_run(cmd, **kwargs):
            raise FileNotFoundError(cmd[0])

        with patch("subprocess.run", side_effect=fake_run):
            resolved = SshdResolver().resolve(ConfigTarget(path), Directive("LoginGraceTime"))

        assert resolved.source is ValueSource.UNKNOWN
        assert "sshd" in resolved.tool_error


class TestSysctlResolver:
    def test_reads_running_kernel(self):
        with patch("subprocess.run", return_value=completed(0, "1\n")) as mock_run:
            resolved = SysctlResolver().resolve(
                ConfigTarget(Path("/nonexistent/99.conf")), Directive("net.ipv4.tcp_syncookies")
            )
        assert resolved.value == "1"
        assert resolved.source is ValueSource.EFFECTIVE
        assert mock_run.call_args[0][0] == ["sysctl", "-n", "net.ipv4.tcp_syncookies"]

    def test_unknown_key(self):
        with patch("subprocess.run", return_value=completed(255, "", "sysctl: cannot stat /proc/sys/x")):
            resolved = SysctlResolver().resolve(ConfigTarget(Path("/nonexistent/99.conf")), Directive("x"))
        assert resolved.source is ValueSource.UNKNOWN
        assert "cannot stat" in resolved.tool_error
