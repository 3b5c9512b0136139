"""
Preflight validation.
"""

import pytest

from n8n_deploy.env_file import DeployConfig
from n8n_deploy.errors import ValidationError
from n8n_deploy.validation import (
    collect_violations,
    is_valid_domain,
    is_valid_email,
    validate_config,
)

VALID = {
    "DOMAIN_NAME": "example.com",
    "SUBDOMAIN": "n8n",
    "EMAIL": "a@example.com",
    "DB_POSTGRESDB_PASSWORD": "secret",
}


def _config(**overrides) -> DeployConfig:
    values = dict(VALID)
    values.update(overrides)
    return DeployConfig.from_values(values)


class TestValidConfig:
    def test_passes(self):
        config = _config()

        validate_config(config)

        assert collect_violations(config) == []
        assert config.fqdn == "n8n.example.com"

    def test_whitespace_is_trimmed_before_checks(self):
        validate_config(_config(DOMAIN_NAME="  example.com ", EMAIL=" a@example.com\t"))


class TestViolations:
    def test_empty_domain_reports_domain_only(self):
        with pytest.raises(ValidationError) as exc:
            validate_config(_config(DOMAIN_NAME=""))

        assert exc.value.fields == {"DOMAIN_NAME"}

    @pytest.mark.parametrize("missing", ["DOMAIN_NAME", "SUBDOMAIN", "EMAIL", "DB_POSTGRESDB_PASSWORD"])
    def test_each_required_field(self, missing):
        with pytest.raises(ValidationError) as exc:
            validate_config(_config(**{missing: "   "}))

        assert exc.value.fields == {missing}

    def test_reports_every_violation(self):
        config = DeployConfig.from_values({"DOMAIN_NAME": "not a domain", "EMAIL": "nope"})

        violations = collect_violations(config)

        assert {v.field for v in violations} == {
            "DOMAIN_NAME", "EMAIL", "SUBDOMAIN", "DB_POSTGRESDB_PASSWORD",
        }
        assert len(violations) == 4

    def test_error_message_lists_fields(self):
        with pytest.raises(ValidationError) as exc:
            validate_config(_config(EMAIL="", SUBDOMAIN=""))

        assert "EMAIL" in str(exc.value)
        assert "SUBDOMAIN" in str(exc.value)
        assert len(exc.value.remediation()) == 2


class TestDomainPattern:
    @pytest.mark.parametrize("domain", [
        "example.com",
        "sub.example.co.uk",
        "a.io",
        "my-site.example.org",
        "x1.example.dev",
    ])
    def test_accepts(self, domain):
        assert is_valid_domain(domain)

    @pytest.mark.parametrize("domain", [
        "localhost",
        "-bad.com",
        "bad-.com",
        "exa mple.com",
        "example.c",
        "example.123",
        "example..com",
        ".example.com",
        "a" * 64 + ".com",
    ])
    def test_rejects(self, domain):
        assert not is_valid_domain(domain)


class TestEmailPattern:
    @pytest.mark.parametrize("email", ["a@example.com", "first.last+tag@mail.example.org"])
    def test_accepts(self, email):
        assert is_valid_email(email)

    @pytest.mark.parametrize("email", ["plain", "@example.com", "a@example", "a b@example.com"])
    def test_rejects(self, email):
        assert not is_valid_email(email)
