"""
Tests for defensys/directives.py - line-oriented directive editing.
"""

from defensys.directives import (
    Directive,
    InsertionPolicy,
    apply_directive,
    apply_directives,
    find_active_value,
    read_text,
)


def sshd(key, value, policy=InsertionPolicy.REPLACE_IN_PLACE):
    return Directive(key, value, policy, " ", section_end=r"^\s*Match\s")


class TestReplaceInPlace:
    def test_replaces_active_line(self):
        text = "Port 22\nLoginGraceTime 120\nPermitRootLogin no\n"
        result = apply_directive(text, sshd("LoginGraceTime", "60"))
        assert result == "Port 22\nLoginGraceTime 60\nPermitRootLogin no\n"

    def test_replaces_every_active_duplicate(self):
        text = "LoginGraceTime 120\nPort 22\nLoginGraceTime 90\n"
        result = apply_directive(text, sshd("LoginGraceTime", "60"))
        assert result.count("LoginGraceTime 60") == 2
        assert "120" not in result and "90" not in result

    def test_uncomments_commented_line_when_no_active_one(self):
        text = "Port 22\n#LoginGraceTime 2m\nPermitRootLogin no\n"
        result = apply_directive(text, sshd("LoginGraceTime", "60"))
        assert result == "Port 22\nLoginGraceTime 60\nPermitRootLogin no\n"

    def test_appends_before_match_block(self):
        text = "Port 22\nMatch User backup\n    ForceCommand internal-sftp\n"
        result = apply_directive(text, sshd("LoginGraceTime", "60"))
        assert result == "Port 22\nLoginGraceTime 60\nMatch User backup\n    ForceCommand internal-sftp\n"

    def test_lines_inside_match_block_are_left_alone(self):
        text = "Port 22\nMatch User backup\n    LoginGraceTime 300\n"
        result = apply_directive(text, sshd("LoginGraceTime", "60"))
        assert "    LoginGraceTime 300\n" in result
        assert result.index("LoginGraceTime 60") < result.index("Match User")

    def test_key_match_is_case_insensitive_by_default(self):
        result = apply_directive("logingracetime 120\n", sshd("LoginGraceTime", "60"))
        assert result == "LoginGraceTime 60\n"

    def test_case_sensitive_key_does_not_match_other_case(self):
        directive = Directive("PASS_MAX_DAYS", "90", case_sensitive=True)
        result = apply_directive("pass_max_days 99999\n", directive)
        assert result == "pass_max_days 99999\nPASS_MAX_DAYS 90\n"

    def test_key_prefix_is_not_matched(self):
        text = "ClientAliveIntervalX 5\n"
        result = apply_directive(text, sshd("ClientAliveInterval", "300"))
        assert result == "ClientAliveIntervalX 5\nClientAliveInterval 300\n"


class TestAppendIfAbsent:
    def test_appends_with_comment_to_empty_file(self):
        directive = Directive(
            "pool", "pool.ntp.org iburst", InsertionPolicy.APPEND_IF_ABSENT,
            match=r"(?:server|pool)\s+", comment="# Default NTP server pool",
        )
        assert apply_directive("", directive) == "# Default NTP server pool\npool pool.ntp.org iburst\n"

    def test_existing_server_line_counts_as_present(self):
        directive = Directive(
            "pool", "pool.ntp.org iburst", InsertionPolicy.APPEND_IF_ABSENT, match=r"(?:server|pool)\s+",
        )
        text = "server time.example.com iburst\n"
        assert apply_directive(text, directive) == text

    def test_commented_line_does_not_count(self):
        directive = Directive("install usb_storage", "/bin/false", InsertionPolicy.APPEND_IF_ABSENT)
        result = apply_directive("# install usb_storage /bin/false\n", directive)
        assert result.endswith("install usb_storage /bin/false\n")
        assert result.startswith("# install usb_storage")


class TestRemove:
    def test_removes_active_lines_only(self):
        text = "DenyUsers bob\n# DenyUsers alice\nPort 22\n"
        result = apply_directive(text, sshd("DenyUsers", "", InsertionPolicy.REMOVE))
        assert result == "# DenyUsers alice\nPort 22\n"

    def test_keeps_lines_inside_match_block(self):
        text = "DenyUsers bob\nMatch Address 10.0.0.0/8\n    DenyUsers eve\n"
        result = apply_directive(text, sshd("DenyUsers", "", InsertionPolicy.REMOVE))
        assert result == "Match Address 10.0.0.0/8\n    DenyUsers eve\n"


class TestWholeBlock:
    def test_replaces_entire_content(self):
        directive = Directive("jail", "[sshd]\nenabled = true\n", InsertionPolicy.REPLACE_WHOLE_BLOCK)
        assert apply_directive("anything\n", directive) == "[sshd]\nenabled = true\n"


class TestBytePreservation:
    def test_crlf_line_endings_are_kept(self):
        text = "Port 22\r\nLoginGraceTime 120\r\n"
        result = apply_directive(text, sshd("LoginGraceTime", "60"))
        assert result == "Port 22\r\nLoginGraceTime 60\r\n"

    def test_appended_line_uses_file_line_ending(self):
        result = apply_directive("Port 22\r\n", sshd("LoginGraceTime", "60"))
        assert result == "Port 22\r\nLoginGraceTime 60\r\n"

    def test_missing_trailing_newline_is_not_invented(self):
        result = apply_directive("Port 22", sshd("LoginGraceTime", "60"))
        assert result == "Port 22\nLoginGraceTime 60"

    def test_application_is_idempotent(self):
        directives = [
            sshd("LoginGraceTime", "60"),
            sshd("DenyUsers", "", InsertionPolicy.REMOVE),
            sshd("AllowUsers", "admin deploy"),
        ]
        text = "Port 22\n#LoginGraceTime 2m\nDenyUsers bob\nMatch User x\n    X11Forwarding no\n"
        once = apply_directives(text, directives)
        assert apply_directives(once, directives) == once


class TestFindActiveValue:
    def test_last_active_value_wins(self):
        text = "LoginGraceTime 120\n#LoginGraceTime 30\nLoginGraceTime 90\n"
        assert find_active_value(text, sshd("LoginGraceTime", "")) == "90"

    def test_commented_only_is_none(self):
        assert find_active_value("#LoginGraceTime 30\n", sshd("LoginGraceTime", "")) is None

    def test_equals_separator_is_stripped(self):
        assert find_active_value("SELINUX=permissive\n", Directive("SELINUX", separator="=")) == "permissive"

    def test_value_inside_match_block_is_ignored(self):
        text = "Match User x\n    LoginGraceTime 30\n"
        assert find_active_value(text, sshd("LoginGraceTime", "")) is None


class TestReadText:
    def test_missing_file_reads_empty(self, tmp_path):
        assert read_text(tmp_path / "absent") == ""

    def test_crlf_is_preserved(self, tmp_path):
        path = tmp_path / "conf"
        path.write_bytes(b"a 1\r\nb 2\r\n")
        assert read_text(path) == "a 1\r\nb 2\r\n"
