"""
Tests for defensys/templates.py - managed file rendering.
"""

import pytest

from defensys.exceptions import TemplateError
from defensys.settings import LogrotateSettings, PasswordPolicySettings, SysctlSettings
from defensys.templates import TemplateRenderer, render, template_context


@pytest.fixture
def renderer():
    return TemplateRenderer()


class TestRenderer:
    def test_lists_templates(self, renderer):
        assert set(renderer.list_templates()) == {
            "sysctl-network", "logrotate-secure", "fail2ban-sshd", "pwquality",
        }

    def test_unknown_template(self, renderer):
        with pytest.raises(TemplateError, match="Unsupported template"):
            renderer.render("nginx")

    def test_missing_parameter_is_an_error(self, renderer):
        with pytest.raises(TemplateError):
            renderer.render("fail2ban-sshd", port=22)

    def test_missing_template_file(self, tmp_path):
        with pytest.raises(TemplateError, match="not found"):
            TemplateRenderer(str(tmp_path)).render("pwquality")


class TestManagedFiles:
    def test_sysctl_snippet(self):
        content = render("sysctl-network", parameters=SysctlSettings().parameters)
        assert "net.ipv4.tcp_syncookies=1\n" in content
        assert "net.ipv4.conf.default.send_redirects=0\n" in content
        assert "# Protect against SYN flood attacks (SYN cookies)" in content
        assert content.endswith("\n")

    def test_fail2ban_jail(self):
        content = render(
            "fail2ban-sshd", port="2222", max_retry=3, find_time="10m", ban_time="1h",
            ignore_ips=["127.0.0.1/8", "::1"],
        )
        assert "[sshd]\n" in content
        assert "port = 2222\n" in content
        assert "maxretry = 3\n" in content
        assert "ignoreip = 127.0.0.1/8 ::1\n" in content

    def test_logrotate_stanza(self):
        content = render("logrotate-secure", **template_context(LogrotateSettings()))
        assert content.startswith("/var/log/secure {\n")
        assert "    weekly\n" in content
        assert "    rotate 4\n" in content
        assert "/usr/bin/systemctl kill -s HUP auditd" in content
        assert "    create 0600 root root\n" in content

    def test_pwquality(self):
        content = render("pwquality", **template_context(PasswordPolicySettings()))
        assert "minlen = 14\n" in content
        assert "minclass = 4\n" in content
        assert "\nenforce_for_root\n" in content

    def test_pwquality_without_root_enforcement(self):
        policy = PasswordPolicySettings(enforce_for_root=0)
        assert "enforce_for_root" not in render("pwquality", **template_context(policy))

    def test_rendering_is_deterministic(self):
        params = template_context(LogrotateSettings())
        assert render("logrotate-secure", **params) == render("logrotate-secure", **params)
