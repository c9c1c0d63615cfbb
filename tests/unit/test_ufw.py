"""Unit tests for UFW state parsing and convergence."""

from hostsec.core.exceptions import ExecutionError
from hostsec.services.ufw import (
    UfwRule,
    UfwService,
    parse_added,
    parse_status,
)


ACTIVE_STATUS = """\
Status: active
Logging: on (low)
Default: deny (incoming), allow (outgoing), disabled (routed)
New profiles: skip

To                         Action      From
--                         ------      ----
OpenSSH                    ALLOW IN    Anywhere
443/tcp                    ALLOW IN    Anywhere
OpenSSH (v6)               ALLOW IN    Anywhere (v6)
443/tcp (v6)               ALLOW IN    Anywhere (v6)
"""

ACTIVE_NO_SSH = """\
Status: active
Logging: on (low)
Default: allow (incoming), allow (outgoing), disabled (routed)
New profiles: skip

To                         Action      From
--                         ------      ----
443/tcp                    ALLOW IN    Anywhere
"""

INACTIVE_STATUS = "Status: inactive\n"

ADDED_NONE = """\
Added user rules (see 'ufw status' for running firewall):
(None)
"""

ADDED_SSH = """\
Added user rules (see 'ufw status' for running firewall):
ufw allow OpenSSH
ufw allow 443/tcp
"""


def stub_ufw(stub, status: str, added: str = ADDED_NONE) -> None:
    stub.on("ufw", "status", stdout="Status: active\n\nTo  Action  From\n")
    stub.on("ufw", "status", "verbose", stdout=status)
    stub.on("ufw", "show", "added", stdout=added)


class TestParseStatus:
    """Tests for ufw status verbose parsing."""

    def test_active(self):
        status = parse_status(ACTIVE_STATUS)
        assert status.active
        assert status.default_incoming == "deny"
        assert status.default_outgoing == "allow"
        assert status.default_routed == "disabled"
        assert len(status.rules) == 4

    def test_rule_columns(self):
        rules = parse_status(ACTIVE_STATUS).rules
        assert rules[0] == UfwRule(to="OpenSSH", action="allow", source="Anywhere")
        assert rules[2].v6
        assert rules[2].to == "OpenSSH"

    def test_inactive(self):
        status = parse_status(INACTIVE_STATUS)
        assert not status.active
        assert status.default_incoming is None
        assert status.rules == []

    def test_allows_ssh(self):
        assert parse_status(ACTIVE_STATUS).allows_ssh()
        assert not parse_status(ACTIVE_NO_SSH).allows_ssh()


class TestParseAdded:
    """Tests for ufw show added parsing."""

    def test_none(self):
        assert parse_added(ADDED_NONE) == []

    def test_rules(self):
        rules = parse_added(ADDED_SSH)
        assert [r.to for r in rules] == ["OpenSSH", "443/tcp"]
        assert rules[0].action == "allow"
        assert str(rules[0]) == "ufw allow OpenSSH"


class TestRuleMatching:
    """Tests for UfwRule.allows_port."""

    def test_port_forms(self):
        assert UfwRule(to="22", action="allow").allows_port(22)
        assert UfwRule(to="22/tcp", action="allow").allows_port(22)
        assert UfwRule(to="ssh", action="allow").allows_port(22)
        assert not UfwRule(to="22/udp", action="allow").allows_port(22)

    def test_limit_counts_as_allow(self):
        assert UfwRule(to="22/tcp", action="limit").allows_port(22)

    def test_deny_does_not_allow(self):
        assert not UfwRule(to="OpenSSH", action="deny").allows_port(22)

    def test_custom_port(self):
        assert UfwRule(to="2222/tcp", action="allow").allows_port(2222)
        assert not UfwRule(to="22/tcp", action="allow").allows_port(2222)

    def test_extended_syntax(self):
        rule = parse_added("ufw allow from 10.0.0.0/8 to any port 22 proto tcp\n")[0]
        assert rule.allows_port(22)
        udp = parse_added("ufw allow to any port 22 proto udp\n")[0]
        assert not udp.allows_port(22)

    def test_app_syntax(self):
        rule = parse_added("ufw allow in on eth0 to any app OpenSSH\n")[0]
        assert rule.allows_port(22)


class TestConverge:
    """Tests for UfwService.converge."""

    def test_fresh_host(self, ctx, executor, stub):
        """Inactive firewall without rules: allow SSH, set policies, enable."""
        stub_ufw(stub, INACTIVE_STATUS)

        report = UfwService(ctx, executor).converge()

        assert ["ufw", "allow", "OpenSSH"] in stub.calls
        assert ["ufw", "default", "deny", "incoming"] in stub.calls
        assert ["ufw", "default", "allow", "outgoing"] in stub.calls
        assert ["ufw", "--force", "enable"] in stub.calls
        assert not stub.ran("ufw", "reload")
        assert report.ok
        assert [c.action for c in report.changes] == ["allow", "deny", "allow", "enabled"]

    def test_ssh_allowed_before_enable(self, ctx, executor, stub):
        stub_ufw(stub, INACTIVE_STATUS)
        UfwService(ctx, executor).converge()
        assert stub.calls.index(["ufw", "allow", "OpenSSH"]) < stub.calls.index(["ufw", "--force", "enable"])

    def test_inactive_with_added_rule(self, ctx, executor, stub):
        """Rules added while inactive are seen through show added."""
        stub_ufw(stub, INACTIVE_STATUS, added=ADDED_SSH)
        UfwService(ctx, executor).converge()
        assert not stub.ran("ufw", "allow")
        assert stub.ran("ufw", "--force", "enable")

    def test_already_converged(self, ctx, executor, stub):
        """Active firewall: never enable, reload instead, nothing changed."""
        stub_ufw(stub, ACTIVE_STATUS, added=ADDED_SSH)

        report = UfwService(ctx, executor).converge()

        assert not stub.ran("ufw", "--force", "enable")
        assert not stub.ran("ufw", "allow")
        assert stub.ran("ufw", "reload")
        assert not report.changed
        assert report.ok

    def test_policy_drift_recorded(self, ctx, executor, stub):
        stub_ufw(stub, ACTIVE_NO_SSH)
        report = UfwService(ctx, executor).converge()
        assert [str(c) for c in report.changes] == [
            "ufw rule: allow (OpenSSH)",
            "ufw default incoming: deny (was allow)",
        ]

    def test_profile_fallback(self, ctx, executor, stub):
        """Without the OpenSSH app profile, fall back to port/tcp."""
        stub_ufw(stub, INACTIVE_STATUS)
        stub.on("ufw", "allow", "OpenSSH", rc=1)

        report = UfwService(ctx, executor).converge()

        assert ["ufw", "allow", "22/tcp"] in stub.calls
        assert report.changes[0].detail == "22/tcp"

    def test_allow_failure_tolerated(self, ctx, executor, stub):
        stub_ufw(stub, INACTIVE_STATUS)
        stub.on("ufw", "allow", rc=1)

        report = UfwService(ctx, executor).converge()

        assert not report.ok
        assert "could not allow SSH" in report.warnings[0]
        assert stub.ran("ufw", "--force", "enable")

    def test_enable_failure_tolerated(self, ctx, executor, stub):
        stub_ufw(stub, INACTIVE_STATUS)
        stub.on("ufw", "--force", "enable", rc=1)
        report = UfwService(ctx, executor).converge()
        assert any("could not activate" in w for w in report.warnings)

    def test_ufw_missing(self, ctx, executor, stub):
        stub.on("ufw", error=ExecutionError("Command not found: ufw", return_code=127))

        report = UfwService(ctx, executor).converge()

        assert not report.ok
        assert stub.calls == [["ufw", "status", "verbose"]]
