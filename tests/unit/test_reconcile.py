"""Unit tests for convergence reports."""

from hostsec.core.reconcile import Change, HardenReport, StageReport


class TestStageReport:
    """Tests for StageReport."""

    def test_empty_report(self):
        report = StageReport(name="ssh")
        assert not report.changed
        assert report.ok
        assert report.summary_line() == "no changes"

    def test_record_change(self):
        report = StageReport(name="firewall")
        report.record("ufw rule", "allow", "OpenSSH")
        assert report.changed
        assert str(report.changes[0]) == "ufw rule: allow (OpenSSH)"

    def test_warning_not_ok(self):
        report = StageReport(name="ssh")
        report.warn("restart failed")
        assert not report.ok
        assert report.summary_line() == "no changes, 1 warning(s)"

    def test_skipped(self):
        assert StageReport(name="ssh", skipped=True).summary_line() == "skipped"


class TestHardenReport:
    """Tests for HardenReport aggregation."""

    def test_aggregates(self):
        report = HardenReport()
        fw = report.add(StageReport(name="firewall"))
        fw.record("ufw", "enabled")
        ssh = report.add(StageReport(name="ssh"))
        ssh.warn("restart failed")

        assert report.changed
        assert not report.ok
        assert report.warnings == ["ssh: restart failed"]
        assert report.get("firewall") is fw
        assert report.get("fail2ban") is None

    def test_change_without_detail(self):
        assert str(Change("service fail2ban", "restarted")) == "service fail2ban: restarted"
