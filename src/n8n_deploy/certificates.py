#!/usr/bin/env python3
"""
Certificate bootstrap sequencer.

Decides whether a certificate must be issued for the FQDN and, when it must,
frees port 80 by stopping the proxy, then runs certbot in standalone HTTP-01
mode as a one-shot container.

    UNCHECKED -> CERTIFICATE_PRESENT
    UNCHECKED -> PROXY_STOPPED -> CHALLENGE_READY -> ISSUANCE_ATTEMPTED
              -> CERTIFICATE_ISSUED | ISSUANCE_FAILED

Safe to run on every deployment: an existing fullchain.pem short-circuits
everything. Renewal is not handled here.
"""

from __future__ import annotations

import enum
import logging
import socket
from pathlib import Path
from typing import Callable

from .config_constants import (
    CERT_CHAIN_FILE,
    CERTBOT_CONTAINER_NAME,
    CERTBOT_CONTAINER_ROOT,
    CERTBOT_IMAGE,
    CHALLENGE_PORT,
    SERVICE_PROXY,
)
from .errors import CertificateIssuanceError
from .runner import DockerCli

logger = logging.getLogger(__name__)


class CertState(enum.Enum):
    UNCHECKED = 'unchecked'
    CERTIFICATE_PRESENT = 'certificate_present'
    PROXY_STOPPED = 'proxy_stopped'
    CHALLENGE_READY = 'challenge_ready'
    ISSUANCE_ATTEMPTED = 'issuance_attempted'
    CERTIFICATE_ISSUED = 'certificate_issued'
    ISSUANCE_FAILED = 'issuance_failed'


def certificate_path(cert_root: Path, fqdn: str) -> Path:
    """{cert_root}/live/{fqdn}/fullchain.pem"""
    return Path(cert_root) / 'live' / fqdn / CERT_CHAIN_FILE


def port_in_use(port: int, host: str = '127.0.0.1', timeout: float = 1.0) -> bool:
    """True when something accepts TCP connections on host:port."""
    try:
        with socket.create_connection((host, port), timeout=timeout):
            return True
    except OSError:
        return False


class CertificateBootstrapper:
    def __init__(
        self,
        docker: DockerCli,
        cert_root: Path,
        proxy_service: str = SERVICE_PROXY,
        port_probe: Callable[[int], bool] = port_in_use,
        verbose: bool = False,
    ) -> None:
        self.docker = docker
        self.cert_root = Path(cert_root).resolve()
        self.proxy_service = proxy_service
        self.port_probe = port_probe
        self.verbose = verbose
        self.state = CertState.UNCHECKED
        self.transitions: list[CertState] = [CertState.UNCHECKED]

    def _enter(self, state: CertState) -> None:
        logger.debug(f"Certificate state: {self.state.value} -> {state.value}")
        self.state = state
        self.transitions.append(state)

    def certificate_present(self, fqdn: str) -> bool:
        # Always re-read: the filesystem is the source of truth
        return certificate_path(self.cert_root, fqdn).is_file()

    def bootstrap(self, fqdn: str, email: str) -> CertState:
        """
        Ensure a certificate exists for fqdn.

        Returns:
            CERTIFICATE_PRESENT or CERTIFICATE_ISSUED

        Raises:
            CertificateIssuanceError: certbot exited non-zero
        """
        self.state = CertState.UNCHECKED
        self.transitions = [CertState.UNCHECKED]

        logger.info("[STEP 1] Checking if a certificate already exists...")
        if self.certificate_present(fqdn.strip()):
            logger.info("Existing certificate found, skipping initial issuance.")
            self._enter(CertState.CERTIFICATE_PRESENT)
            return self.state

        logger.info(f"[STEP 2] Stopping any running {self.proxy_service} container to free port {CHALLENGE_PORT}...")
        self.stop_proxy()
        self._enter(CertState.PROXY_STOPPED)

        self.check_challenge_port()
        self._enter(CertState.CHALLENGE_READY)

        logger.info("[STEP 3] Obtaining initial Let's Encrypt certificate...")
        return self.request_certificate(fqdn, email)

    def stop_proxy(self) -> None:
        """Best effort: the proxy may not exist yet."""
        for args in (('stop', self.proxy_service), ('rm', '-f', self.proxy_service)):
            try:
                result = self.docker.compose(*args)
            except OSError as e:
                logger.warning(f"compose {args[0]} {self.proxy_service} failed: {e}")
                continue
            if not result.ok:
                logger.debug(f"compose {args[0]} {self.proxy_service} exited {result.returncode} (ignored)")

    def check_challenge_port(self) -> None:
        """Advisory only; certbot's own bind attempt is authoritative."""
        try:
            busy = self.port_probe(CHALLENGE_PORT)
        except Exception as e:
            logger.debug(f"Port {CHALLENGE_PORT} check failed: {e}")
            return
        if busy:
            logger.warning(
                f"Port {CHALLENGE_PORT} appears to be in use. "
                "Certbot needs it for the HTTP-01 challenge."
            )
            logger.warning(f"Please ensure port {CHALLENGE_PORT} is available or stop the service using it.")

    def certbot_args(self, fqdn: str, email: str) -> list:
        args = [
            'run', '--rm',
            '--name', CERTBOT_CONTAINER_NAME,
            '-p', f"{CHALLENGE_PORT}:{CHALLENGE_PORT}",
            '-v', f"{self.cert_root}:{CERTBOT_CONTAINER_ROOT}",
            CERTBOT_IMAGE, 'certonly', '--standalone',
            '--agree-tos', '--non-interactive',
            '--preferred-challenges', 'http',
            '-d', fqdn, '-m', email,
        ]
        if self.verbose:
            args.append('-v')
        return args

    def request_certificate(self, fqdn: str, email: str) -> CertState:
        logger.debug(f"Domain value: '{fqdn}' (length: {len(fqdn)})")
        logger.debug(f"Email value: '{email}' (length: {len(email)})")

        # Stray whitespace here breaks the ACME challenge
        fqdn = fqdn.strip()
        email = email.strip()
        logger.info(f"Domain: {fqdn}")
        logger.info(f"Email: {email}")

        self._enter(CertState.ISSUANCE_ATTEMPTED)
        result = self.docker.docker(*self.certbot_args(fqdn, email), capture=False)

        if not result.ok:
            self._enter(CertState.ISSUANCE_FAILED)
            raise CertificateIssuanceError(fqdn, result.returncode)

        self._enter(CertState.CERTIFICATE_ISSUED)
        if not self.certificate_present(fqdn):
            logger.warning(
                f"certbot reported success but {certificate_path(self.cert_root, fqdn)} is missing"
            )
        logger.info("Certificate obtained successfully!")
        return self.state

    def describe(self) -> str:
        return ' -> '.join(state.value for state in self.transitions)
