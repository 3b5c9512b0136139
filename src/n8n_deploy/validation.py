#!/usr/bin/env python3
"""Preflight checks on the loaded configuration."""

from __future__ import annotations

import re
from dataclasses import dataclass

from .config_constants import KEY_DB_PASSWORD, KEY_DOMAIN, KEY_EMAIL, KEY_SUBDOMAIN
from .env_file import DeployConfig
from .errors import ValidationError

_LABEL = r'[A-Za-z0-9](?:[A-Za-z0-9-]{0,61}[A-Za-z0-9])?'
DOMAIN_PATTERN = re.compile(rf'^(?:{_LABEL}\.)+[A-Za-z]{{2,}}$')
EMAIL_PATTERN = re.compile(r'^[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}$')


@dataclass(frozen=True)
class Violation:
    field: str
    message: str


def is_valid_domain(value: str) -> bool:
    return bool(DOMAIN_PATTERN.match(value))


def is_valid_email(value: str) -> bool:
    return bool(EMAIL_PATTERN.match(value))


def collect_violations(config: DeployConfig) -> list[Violation]:
    """Return every violated constraint, at most one per field."""
    violations = []

    if not config.domain_name:
        violations.append(Violation(KEY_DOMAIN, "is required"))
    elif not is_valid_domain(config.domain_name):
        violations.append(Violation(
            KEY_DOMAIN, f"invalid format '{config.domain_name}' (expected e.g. example.com)"
        ))

    if not config.email:
        violations.append(Violation(KEY_EMAIL, "is required"))
    elif not is_valid_email(config.email):
        violations.append(Violation(
            KEY_EMAIL, f"invalid format '{config.email}' (expected e.g. user@example.com)"
        ))

    if not config.subdomain:
        violations.append(Violation(KEY_SUBDOMAIN, "is required"))

    if not config.db_password:
        violations.append(Violation(KEY_DB_PASSWORD, "is required"))

    return violations


def validate_config(config: DeployConfig) -> None:
    """
    Raises:
        ValidationError: listing all violations, if there are any
    """
    violations = collect_violations(config)
    if violations:
        raise ValidationError(violations)
