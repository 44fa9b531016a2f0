"""
Tests for command execution, package installation and authorization.
"""

import subprocess
from unittest.mock import MagicMock, patch

import pytest

from defensys.authorization import AutoApprove, AutoDeny, InteractiveAuthorization
from defensys.commands import CommandResult, require_tools, run_command
from defensys.exceptions import PreconditionError
from defensys.packages import PackageInstaller


def completed(returncode=0, stdout="", stderr=""):
    result = MagicMock()
    result.returncode = returncode
    result.stdout = stdout
    result.stderr = stderr
    return result


def which_for(*present):
    return lambda name: f"/usr/bin/{name}" if name in present else None


class TestRunCommand:
    def test_captures_output(self):
        with patch("subprocess.run", return_value=completed(0, "out\n", "warn\n")) as mock_run:
            result = run_command(["sshd", "-t"])
        assert result.ok
        assert result.output == "out\nwarn"
        assert mock_run.call_args[1]["capture_output"] is True

    def test_missing_executable(self):
        with patch("subprocess.run", side_effect=FileNotFoundError()):
            with pytest.raises(PreconditionError, match="sshd"):
                run_command(["sshd", "-t"])

    def test_timeout(self):
        with patch("subprocess.run", side_effect=subprocess.TimeoutExpired(["sleep"], 1)):
            result = run_command(["sleep", "10"], timeout=1)
        assert result.returncode == 124
        assert not result.ok

    def test_require_tools(self):
        with patch("shutil.which", side_effect=which_for("sshd")):
            require_tools("sshd")
            with pytest.raises(PreconditionError, match="aide"):
                require_tools("sshd", "aide")

    def test_output_empty(self):
        assert CommandResult(["true"], 0).output == ""


class TestPackageInstaller:
    def test_rejects_injection(self):
        with patch("shutil.which", side_effect=which_for("dnf")):
            installer = PackageInstaller()
        with pytest.raises(PreconditionError, match="Invalid package name"):
            installer.install("aide; rm -rf /")

    def test_dnf_install(self):
        with patch("shutil.which", side_effect=which_for("dnf", "rpm")):
            installer = PackageInstaller()
        with patch("subprocess.run", return_value=completed(0)) as mock_run:
            installer.install("aide")
        mock_run.assert_called_once()
        assert mock_run.call_args[0][0] == ["dnf", "install", "-y", "aide"]

    def test_apt_updates_first(self):
        with patch("shutil.which", side_effect=which_for("apt-get", "dpkg")):
            installer = PackageInstaller()
        with patch("subprocess.run", return_value=completed(0)) as mock_run:
            installer.install("chrony")
        commands = [c[0][0] for c in mock_run.call_args_list]
        assert commands == [["apt-get", "update"], ["apt-get", "install", "-y", "chrony"]]

    def test_install_failure(self):
        with patch("shutil.which", side_effect=which_for("dnf")):
            installer = PackageInstaller()
        with patch("subprocess.run", return_value=completed(1, "", "No match for argument: lynis")):
            with pytest.raises(PreconditionError, match="No match"):
                installer.install("lynis")

    def test_no_package_manager(self):
        with patch("shutil.which", return_value=None):
            installer = PackageInstaller()
        with pytest.raises(PreconditionError, match="manually"):
            installer.install("aide")

    def test_is_installed(self):
        with patch("shutil.which", side_effect=which_for("rpm")):
            installer = PackageInstaller()
        with patch("subprocess.run", return_value=completed(0, "aide-0.16-1.el9")) as mock_run:
            assert installer.is_installed("aide")
        assert mock_run.call_args[0][0] == ["rpm", "-q", "aide"]

    def test_ensure_tool_already_present(self):
        with patch("shutil.which", side_effect=which_for("dnf", "fail2ban-client")):
            installer = PackageInstaller()
            with patch("subprocess.run") as mock_run:
                installer.ensure_tool("fail2ban-client", "fail2ban")
        mock_run.assert_not_called()

    def test_ensure_tool_still_missing(self):
        with patch("shutil.which", side_effect=which_for("dnf")):
            installer = PackageInstaller()
            with patch("subprocess.run", return_value=completed(0)):
                with pytest.raises(PreconditionError, match="still not available"):
                    installer.ensure_tool("oscap", "openscap-scanner")


class TestAuthorization:
    def test_auto_providers(self):
        assert AutoApprove().authorize("Apply?")
        assert not AutoDeny().authorize("Apply?")

    def test_interactive(self):
        with patch("rich.prompt.Confirm.ask", return_value=True):
            assert InteractiveAuthorization().authorize("Apply?")

    def test_interactive_eof_denies(self):
        with patch("rich.prompt.Confirm.ask", side_effect=EOFError):
            assert not InteractiveAuthorization().authorize("Apply?")
