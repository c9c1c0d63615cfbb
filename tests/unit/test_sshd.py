"""Unit tests for SSH drop-in hardening."""

from hostsec.services.sshd import SshHardening, parse_sshd_config


HARDENED = """\
# Managed by hostsec
PasswordAuthentication no
KbdInteractiveAuthentication no
PermitRootLogin prohibit-password
"""


class TestParseSshdConfig:
    """Tests for sshd_config parsing."""

    def test_keys_lowercased(self):
        config = parse_sshd_config("PasswordAuthentication no\nPort 22\n")
        assert config == {"passwordauthentication": "no", "port": "22"}

    def test_comments_and_blank_lines(self):
        config = parse_sshd_config("# PasswordAuthentication yes\n\n   \nPort 22\n")
        assert config == {"port": "22"}

    def test_equals_separator(self):
        config = parse_sshd_config("PasswordAuthentication=no\nBanner = /etc/issue.net\n")
        assert config["passwordauthentication"] == "no"
        assert config["banner"] == "/etc/issue.net"

    def test_first_value_wins(self):
        config = parse_sshd_config("PasswordAuthentication no\nPasswordAuthentication yes\n")
        assert config["passwordauthentication"] == "no"

    def test_stops_at_match(self):
        config = parse_sshd_config(
            "Port 22\nMatch User deploy\n    PasswordAuthentication yes\n"
        )
        assert "passwordauthentication" not in config

    def test_quoted_value(self):
        config = parse_sshd_config('AuthorizedKeysFile ".ssh/authorized_keys"\n')
        assert config["authorizedkeysfile"] == ".ssh/authorized_keys"


class TestState:
    """Tests for drop-in state detection."""

    def test_missing_file_needs_update(self, ctx, executor):
        state = SshHardening(ctx, executor).state()
        assert state.dir_exists
        assert not state.file_exists
        assert state.needs_update

    def test_hardened_file(self, ctx, executor):
        ctx.config.ssh.dropin_path.write_text(HARDENED)
        state = SshHardening(ctx, executor).state()
        assert state.hardened
        assert not state.needs_update

    def test_marker_case_insensitive(self, ctx, executor):
        ctx.config.ssh.dropin_path.write_text("passwordauthentication NO\n")
        assert not SshHardening(ctx, executor).state().needs_update

    def test_file_without_marker(self, ctx, executor):
        ctx.config.ssh.dropin_path.write_text("PermitRootLogin no\n")
        assert SshHardening(ctx, executor).state().needs_update

    def test_latin1_comment(self, ctx, executor):
        ctx.config.ssh.dropin_path.write_bytes(b"# \xe9\nPasswordAuthentication no\n")
        assert SshHardening(ctx, executor).state().hardened


class TestRender:
    """Tests for drop-in content."""

    def test_render(self, ctx, executor):
        assert SshHardening(ctx, executor).render() == HARDENED

    def test_rendered_content_is_hardened(self, ctx, executor):
        directives = parse_sshd_config(SshHardening(ctx, executor).render())
        assert directives["passwordauthentication"] == "no"
        assert directives["kbdinteractiveauthentication"] == "no"
        assert directives["permitrootlogin"] == "prohibit-password"


class TestConverge:
    """Tests for SshHardening.converge."""

    def test_writes_and_restarts(self, ctx, executor, stub):
        report = SshHardening(ctx, executor).converge()

        assert ctx.config.ssh.dropin_path.read_text() == HARDENED
        assert stub.calls == [["systemctl", "restart", "ssh"]]
        assert [str(c) for c in report.changes][-1] == "service ssh: restarted"
        assert report.ok

    def test_already_hardened_no_restart(self, ctx, executor, stub):
        path = ctx.config.ssh.dropin_path
        path.write_text(HARDENED)
        mtime = path.stat().st_mtime_ns

        report = SshHardening(ctx, executor).converge()

        assert stub.calls == []
        assert path.stat().st_mtime_ns == mtime
        assert not report.changed

    def test_second_run_is_noop(self, ctx, executor, stub):
        hardening = SshHardening(ctx, executor)
        hardening.converge()
        stub.calls.clear()

        report = hardening.converge()

        assert not report.changed
        assert stub.calls == []

    def test_existing_file_backed_up(self, ctx, executor, stub):
        path = ctx.config.ssh.dropin_path
        path.write_text("PasswordAuthentication yes\n")

        report = SshHardening(ctx, executor).converge()

        backups = list(path.parent.glob("99-security.conf.*.bak"))
        assert len(backups) == 1
        assert backups[0].read_text() == "PasswordAuthentication yes\n"
        assert report.changes[0].action == "backed up"
        assert path.read_text() == HARDENED

    def test_falls_back_to_sshd(self, ctx, executor, stub):
        stub.on("systemctl", "restart", "ssh", rc=5)
        report = SshHardening(ctx, executor).converge()
        assert report.changes[-1].resource == "service sshd"
        assert report.ok

    def test_restart_failure_tolerated(self, ctx, executor, stub):
        """Both unit names failing leaves the drop-in and warns."""
        stub.on("systemctl", "restart", rc=5)

        report = SshHardening(ctx, executor).converge()

        assert ctx.config.ssh.dropin_path.exists()
        assert stub.count("systemctl", "restart") == 2
        assert not report.ok
        assert "ssh, sshd" in report.warnings[0]

    def test_rewrites_non_utf8_dropin(self, ctx, executor, stub):
        path = ctx.config.ssh.dropin_path
        path.write_bytes(b"# \xe9\nPasswordAuthentication yes\n")

        report = SshHardening(ctx, executor).converge()

        assert path.read_text() == HARDENED
        assert ["systemctl", "restart", "ssh"] in stub.calls
        assert report.ok

    def test_missing_directory_skipped(self, ctx, executor, stub, tmp_path):
        ctx.config.ssh.dropin_dir = tmp_path / "no-such-dir"

        report = SshHardening(ctx, executor).converge()

        assert report.skipped
        assert report.warnings
        assert not (tmp_path / "no-such-dir").exists()
        assert stub.calls == []
