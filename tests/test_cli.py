"""Tests for the tenantdomains CLI."""

from __future__ import annotations

import json
import os
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest
import structlog
from click.testing import CliRunner

from tenantdomains import __version__
from tenantdomains.cli import main
from tenantdomains.core.config import clear_config


@pytest.fixture
def runner(tmp_path):
    """A CliRunner whose working directory is a fresh temporary directory."""
    clear_config()
    runner = CliRunner()
    with runner.isolated_filesystem(temp_dir=tmp_path):
        yield runner
    # Commands bind logging to the runner's stderr, which is closed afterwards.
    structlog.reset_defaults()
    clear_config()


def add_domain(runner, hostname="app.acme.com", *args):
    result = runner.invoke(main, ["domain", "add", "tenant-1", hostname, *args])
    assert result.exit_code == 0, result.output
    data = json.loads(Path("domains.json").read_text())
    return next(r for r in data["domains"].values() if r["hostname"] == hostname)


def txt_records(*values):
    return patch(
        "tenantdomains.domains.verification.DNSVerifier.resolve_txt",
        new=AsyncMock(return_value=list(values)),
    )


class TestMainCommand:
    """Tests for the top-level command."""

    def test_help_lists_groups(self, runner):
        """Test --help shows the command groups."""
        result = runner.invoke(main, ["--help"])

        assert result.exit_code == 0
        assert "domain" in result.output
        assert "ssl" in result.output
        assert "config" in result.output

    def test_version_command(self, runner):
        """Test version command shows the package version."""
        result = runner.invoke(main, ["version"])

        assert result.exit_code == 0
        assert __version__ in result.output

    def test_config_command(self, runner):
        """Test config prints the effective settings as JSON."""
        result = runner.invoke(main, ["--storage", "custom.json", "config"])

        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["storage_path"] == "custom.json"
        assert data["cname_target"] == "proxy.pmo-platform.com"

    def test_config_from_environment(self, runner):
        """Test settings come from the environment when no options are given."""
        with patch.dict(os.environ, {"TENANTDOMAINS_CNAME_TARGET": "edge.example.net"}):
            result = runner.invoke(main, ["config"])

        assert result.exit_code == 0
        assert json.loads(result.stdout)["cname_target"] == "edge.example.net"

    def test_config_file(self, runner):
        """Test --config loads settings from a YAML file."""
        Path("domains.yaml").write_text("domains:\n  cname_target: edge.example.net\n")

        result = runner.invoke(main, ["--config", "domains.yaml", "config"])

        assert result.exit_code == 0
        assert json.loads(result.stdout)["cname_target"] == "edge.example.net"

    def test_bad_config_file(self, runner):
        """Test an unsupported config file exits with an error."""
        Path("domains.ini").write_text("")

        result = runner.invoke(main, ["--config", "domains.ini", "config"])

        assert result.exit_code == 1
        assert "Configuration error" in result.output


class TestDomainCommands:
    """Tests for domain management commands."""

    def test_domain_group_help(self, runner):
        """Test domain command group shows help."""
        result = runner.invoke(main, ["domain", "--help"])

        assert result.exit_code == 0
        for command in ("add", "list", "get", "remove", "set-primary", "verify", "check-cname"):
            assert command in result.output

    def test_add_and_list(self, runner):
        """Test a registered domain appears in the tenant's list."""
        record = add_domain(runner, "https://www.App.Acme.com/")

        result = runner.invoke(main, ["domain", "list", "tenant-1", "--json"])

        assert result.exit_code == 0
        domains = json.loads(result.stdout)
        assert [d["hostname"] for d in domains] == ["app.acme.com"]
        assert domains[0]["id"] == record["id"]
        assert domains[0]["ssl_status"] == "PENDING"

    def test_add_shows_dns_records(self, runner):
        """Test registration output includes the TXT record to publish."""
        result = runner.invoke(main, ["domain", "add", "tenant-1", "app.acme.com"])

        assert result.exit_code == 0
        assert "_pmo-verify.app.acme.com" in result.output
        assert "Domain registered successfully" in result.output

    def test_add_duplicate(self, runner):
        """Test registering a taken hostname fails."""
        add_domain(runner)

        result = runner.invoke(main, ["domain", "add", "tenant-2", "app.acme.com"])

        assert result.exit_code == 1
        assert "already registered" in result.output

    def test_add_invalid(self, runner):
        """Test a malformed hostname is rejected."""
        result = runner.invoke(main, ["domain", "add", "tenant-1", "not a domain"])

        assert result.exit_code == 1
        assert "Invalid domain name" in result.output

    def test_list_empty(self, runner):
        """Test listing a tenant without domains."""
        result = runner.invoke(main, ["domain", "list", "tenant-1"])

        assert result.exit_code == 0
        assert "No domains registered" in result.output

    def test_get(self, runner):
        """Test get shows a single domain as JSON."""
        record = add_domain(runner)

        result = runner.invoke(main, ["domain", "get", record["id"], "--json"])

        assert result.exit_code == 0
        assert json.loads(result.stdout)["hostname"] == "app.acme.com"

    def test_get_other_tenant(self, runner):
        """Test a tenant-scoped get hides other tenants' domains."""
        record = add_domain(runner)

        result = runner.invoke(main, ["domain", "get", record["id"], "--tenant-id", "tenant-2"])

        assert result.exit_code == 1
        assert "not found" in result.output

    def test_get_missing(self, runner):
        """Test get on an unknown id fails."""
        result = runner.invoke(main, ["domain", "get", "missing"])

        assert result.exit_code == 1

    def test_instructions_json(self, runner):
        """Test instructions are available as JSON."""
        record = add_domain(runner)

        result = runner.invoke(
            main, ["domain", "instructions", record["id"], "--tenant-id", "tenant-1", "--json"]
        )

        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["host"] == "_pmo-verify.app.acme.com"
        assert data["value"] == record["verify_token"]

    def test_instructions_other_tenant(self, runner):
        """Test another tenant cannot read the verification token."""
        record = add_domain(runner)

        result = runner.invoke(
            main, ["domain", "instructions", record["id"], "--tenant-id", "tenant-2", "--json"]
        )

        assert result.exit_code == 1
        assert record["verify_token"] not in result.output
        assert "not found" in result.output

    def test_instructions_requires_tenant(self, runner):
        """Test the tenant id is mandatory."""
        record = add_domain(runner)

        result = runner.invoke(main, ["domain", "instructions", record["id"]])

        assert result.exit_code == 2
        assert "--tenant-id" in result.output

    def test_verify_not_propagated(self, runner):
        """Test a missing token exits non-zero with the propagation hint."""
        record = add_domain(runner)

        with txt_records():
            result = runner.invoke(main, ["domain", "verify", record["id"]])

        assert result.exit_code == 1
        assert "propagation" in result.output

    def test_verify_provisions_certificate(self, runner):
        """Test successful verification leaves an active certificate."""
        record = add_domain(runner)

        with txt_records(record["verify_token"]):
            result = runner.invoke(main, ["domain", "verify", record["id"]])

        assert result.exit_code == 0, result.output
        assert "Domain verified successfully" in result.output

        status = runner.invoke(main, ["ssl", "status", record["id"], "--json"])
        data = json.loads(status.stdout)
        assert data["status"] == "ACTIVE"
        assert data["expiresAt"].endswith("Z")
        assert Path("certs", "app.acme.com.pem").exists()

    def test_set_primary_requires_verification(self, runner):
        """Test an unverified domain cannot become primary."""
        record = add_domain(runner)

        result = runner.invoke(
            main, ["domain", "set-primary", record["id"], "--tenant-id", "tenant-1"]
        )

        assert result.exit_code == 1
        assert "must be verified" in result.output

    def test_resolve(self, runner):
        """Test only verified domains resolve to a tenant."""
        record = add_domain(runner)

        before = runner.invoke(main, ["domain", "resolve", "app.acme.com"])
        with txt_records(record["verify_token"]):
            runner.invoke(main, ["domain", "verify", record["id"]])
        after = runner.invoke(main, ["domain", "resolve", "https://app.acme.com/"])

        assert before.exit_code == 1
        assert after.exit_code == 0
        assert after.stdout.strip() == "tenant-1"

    def test_check_cname(self, runner):
        """Test the CNAME check reports the observed target."""
        record = add_domain(runner)

        with patch(
            "tenantdomains.domains.verification.DNSVerifier.resolve_cname",
            new=AsyncMock(return_value=["elsewhere.example.net"]),
        ):
            result = runner.invoke(main, ["domain", "check-cname", record["id"]])

        assert result.exit_code == 1
        assert "elsewhere.example.net" in result.output

    def test_remove(self, runner):
        """Test removing a domain with --yes."""
        record = add_domain(runner)

        result = runner.invoke(
            main, ["domain", "remove", record["id"], "--tenant-id", "tenant-1", "-y"]
        )

        assert result.exit_code == 0
        assert "Domain removed" in result.output
        listed = runner.invoke(main, ["domain", "list", "tenant-1", "--json"])
        assert json.loads(listed.stdout) == []

    def test_remove_cancelled(self, runner):
        """Test declining the confirmation keeps the domain."""
        record = add_domain(runner)

        result = runner.invoke(
            main, ["domain", "remove", record["id"], "--tenant-id", "tenant-1"], input="n\n"
        )

        assert result.exit_code == 0
        assert "Cancelled" in result.output
        listed = runner.invoke(main, ["domain", "list", "tenant-1", "--json"])
        assert len(json.loads(listed.stdout)) == 1

    def test_remove_other_tenant(self, runner):
        """Test a tenant cannot remove another tenant's domain."""
        record = add_domain(runner)

        result = runner.invoke(
            main, ["domain", "remove", record["id"], "--tenant-id", "tenant-2", "-y"]
        )

        assert result.exit_code == 1


class TestSslCommands:
    """Tests for certificate commands."""

    def test_status_pending(self, runner):
        """Test a new domain reports a pending certificate."""
        record = add_domain(runner)

        result = runner.invoke(main, ["ssl", "status", record["id"], "--json"])

        assert result.exit_code == 0
        assert json.loads(result.stdout) == {
            "status": "PENDING",
            "message": "SSL certificate not yet provisioned",
        }

    def test_provision_unverified(self, runner):
        """Test provisioning an unverified domain fails."""
        record = add_domain(runner)

        result = runner.invoke(main, ["ssl", "provision", record["id"]])

        assert result.exit_code == 1
        assert "must be verified before SSL provisioning" in result.output

    def test_renew(self, runner):
        """Test renewing a verified domain's certificate."""
        record = add_domain(runner)
        with txt_records(record["verify_token"]):
            runner.invoke(main, ["domain", "verify", record["id"]])

        result = runner.invoke(main, ["ssl", "renew", record["id"]])

        assert result.exit_code == 0
        assert "provisioned successfully" in result.output

    def test_renew_due_nothing(self, runner):
        """Test a renewal sweep with nothing due."""
        result = runner.invoke(main, ["ssl", "renew-due"])

        assert result.exit_code == 0
        assert "No certificates due" in result.output

    def test_watch_runs_renewal_loop(self, runner):
        """Test watch runs the renewal loop with the given interval."""
        with patch("tenantdomains.domains.certificates.run_renewal_loop", new=AsyncMock()) as mock_loop:
            result = runner.invoke(main, ["ssl", "watch", "--interval", "5"])

        assert result.exit_code == 0, result.output
        assert mock_loop.await_args.args[1] == 5.0
        assert "every 5s" in result.output
