#!/usr/bin/env python3
"""Exception hierarchy for the bootstrap sequence."""

from __future__ import annotations

from typing import Iterable, Sequence


class DeployError(Exception):
    """Base class for every failure the engine reports to the operator."""

    def remediation(self) -> list[str]:
        return []


class MissingFileError(DeployError):
    """Configuration file is absent."""

    def __init__(self, path: str, example_path: str | None = None) -> None:
        self.path = path
        self.example_path = example_path
        super().__init__(f"Environment file not found: {path}")

    def remediation(self) -> list[str]:
        if self.example_path:
            return [
                f"Create it from the template: cp {self.example_path} {self.path}",
                "Then edit it with your configuration",
            ]
        return [
            "No .env.example template was found next to it either",
            "Create the file with DOMAIN_NAME, SUBDOMAIN, EMAIL and DB_POSTGRESDB_PASSWORD",
        ]


class ValidationError(DeployError):
    """One or more required fields are missing or malformed."""

    def __init__(self, violations: Sequence) -> None:
        self.violations = list(violations)
        fields = ", ".join(v.field for v in self.violations)
        super().__init__(f"Invalid configuration ({len(self.violations)} problem(s)): {fields}")

    @property
    def fields(self) -> set[str]:
        return {v.field for v in self.violations}

    def remediation(self) -> list[str]:
        return [f"{v.field}: {v.message}" for v in self.violations]


class DependencyInstallError(DeployError):
    """Host package or container runtime setup failed."""

    def __init__(self, step: str, detail: str = "") -> None:
        self.step = step
        self.detail = detail
        message = f"Dependency installation failed at step: {step}"
        if detail:
            message += f" ({detail})"
        super().__init__(message)


class NetworkIdentityError(DeployError):
    """No usable external address from the probes or the override."""

    def remediation(self) -> list[str]:
        return ["Set EXTERNAL_IP in your .env file"]


class CertificateIssuanceError(DeployError):
    """The ACME client reported failure."""

    def __init__(self, fqdn: str, returncode: int) -> None:
        self.fqdn = fqdn
        self.returncode = returncode
        self.hints = [
            f"Domain {fqdn} resolves to this server's IP",
            "Port 80 is accessible from the internet",
            "Firewall allows incoming connections on port 80",
        ]
        super().__init__(f"Failed to obtain certificate for {fqdn} (certbot exit {returncode})")

    def remediation(self) -> list[str]:
        return ["Please check:"] + [f"  {idx}. {hint}" for idx, hint in enumerate(self.hints, 1)]


class ServiceStartError(DeployError):
    """One or more services did not reach the running state."""

    def __init__(self, failed: Iterable[str], detail: str = "") -> None:
        self.failed = sorted(failed)
        message = "Services failed to start"
        if self.failed:
            message += f": {', '.join(self.failed)}"
        if detail:
            message += f" ({detail})"
        super().__init__(message)

    def remediation(self) -> list[str]:
        services = self.failed or ["<service>"]
        return [f"Inspect logs: docker compose logs -f {name}" for name in services]
