#!/usr/bin/env python3
"""
Container runtime installation for Debian/Ubuntu hosts.

Idempotent: when docker and a compose CLI are already callable nothing is
installed. Any failing install step aborts the run; the target is a fresh,
single-purpose host, so no partial-install recovery is attempted.
"""

from __future__ import annotations

import getpass
import logging
import os
import platform
from typing import Mapping, Optional, Sequence

from .config_constants import (
    DOCKER_APT_KEY_URL,
    DOCKER_APT_REPO_URL,
    DOCKER_APT_SOURCE,
    DOCKER_GROUP,
    DOCKER_KEYRING,
    DOCKER_KEYRING_DIR,
    DOCKER_PACKAGES,
    DOCKER_PREREQ_PACKAGES,
)
from .errors import DependencyInstallError
from .runner import CommandResult, CommandRunner, DockerCli

logger = logging.getLogger(__name__)

SUPPORTED_DISTROS = ('ubuntu', 'debian')

# Reasons a direct `docker info` can fail
ACCESS_OK = 'ok'
ACCESS_PERMISSION = 'permission'
ACCESS_DAEMON = 'daemon'
ACCESS_UNKNOWN = 'unknown'


def classify_docker_access(result: CommandResult) -> str:
    """Tell "socket not accessible to this user" apart from "daemon not running"."""
    if result.ok:
        return ACCESS_OK
    text = f"{result.stderr}\n{result.stdout}".lower()
    if 'permission denied' in text:
        return ACCESS_PERMISSION
    if 'cannot connect to the docker daemon' in text or 'is the docker daemon running' in text:
        return ACCESS_DAEMON
    return ACCESS_UNKNOWN


def _last_line(text: str) -> str:
    lines = [line for line in text.strip().splitlines() if line.strip()]
    return lines[-1] if lines else ''


class DependencyInstaller:
    def __init__(
        self,
        runner: CommandRunner,
        user: Optional[str] = None,
        os_release: Optional[Mapping[str, str]] = None,
    ) -> None:
        self.runner = runner
        self.user = user or os.environ.get('SUDO_USER') or getpass.getuser()
        self._os_release = os_release

    # ------------------------------------------------------------------
    # Detection
    # ------------------------------------------------------------------

    def find_compose(self) -> Optional[tuple]:
        """Return the compose command prefix that works on this host, if any."""
        for prefix in ([], ['sudo']):
            if self.runner.run([*prefix, 'docker', 'compose', 'version']).ok:
                return ('docker', 'compose')
        if self.runner.which('docker-compose'):
            return ('docker-compose',)
        return None

    def docker_present(self) -> bool:
        return self.runner.which('docker') is not None

    def os_release(self) -> Mapping[str, str]:
        if self._os_release is None:
            try:
                self._os_release = platform.freedesktop_os_release()
            except OSError:
                self._os_release = {}
        return self._os_release

    def distro_id(self) -> str:
        info = self.os_release()
        candidates = [info.get('ID', '')] + info.get('ID_LIKE', '').split()
        for candidate in candidates:
            if candidate in SUPPORTED_DISTROS:
                return candidate
        return 'ubuntu'

    # ------------------------------------------------------------------
    # Installation
    # ------------------------------------------------------------------

    def ensure(self) -> DockerCli:
        """Install docker + compose when missing and return the invocation mode."""
        logger.info("Checking for Docker installation...")
        compose_base = self.find_compose() if self.docker_present() else None

        if compose_base:
            logger.info("Docker and Docker Compose are already present")
        else:
            self._require_apt()
            self._sudo('refresh package index', ['apt-get', 'update', '-y'])
            if not self.runner.which('curl'):
                logger.info("Installing curl...")
                self._sudo('install curl', ['apt-get', 'install', '-y', 'curl'])

            if not self.docker_present():
                self.install_docker()
            else:
                logger.info("Docker found without Compose, installing the compose plugin...")
                self._sudo('install compose plugin', ['apt-get', 'install', '-y', 'docker-compose-plugin'])

            compose_base = self.find_compose()
            if not compose_base:
                raise DependencyInstallError('verify docker compose', 'compose CLI still not callable')

        self.ensure_daemon_active()
        return self.select_invocation_mode(compose_base)

    def install_docker(self) -> None:
        logger.info("Docker not found. Installing Docker...")
        distro = self.distro_id()

        self._sudo('install prerequisites', ['apt-get', 'install', '-y', *DOCKER_PREREQ_PACKAGES])
        self._sudo('create keyring directory', ['mkdir', '-p', DOCKER_KEYRING_DIR])
        # Stale key would make gpg prompt for overwrite
        self._sudo('remove stale signing key', ['rm', '-f', DOCKER_KEYRING])
        key_url = DOCKER_APT_KEY_URL.format(distro=distro)
        self._sudo('add signing key', [
            'sh', '-c', f"curl -fsSL {key_url} | gpg --dearmor -o {DOCKER_KEYRING}",
        ])

        arch = self._query('detect architecture', ['dpkg', '--print-architecture'])
        codename = self._codename()
        source = (
            f"deb [arch={arch} signed-by={DOCKER_KEYRING}] "
            f"{DOCKER_APT_REPO_URL.format(distro=distro)} {codename} stable\n"
        )
        logger.debug(f"Docker apt source: {source.strip()}")
        self._sudo('register repository', ['tee', DOCKER_APT_SOURCE], input=source)

        self._sudo('refresh package index', ['apt-get', 'update'])
        self._sudo('install docker engine', ['apt-get', 'install', '-y', *DOCKER_PACKAGES])
        self._sudo('start docker service', ['systemctl', 'start', 'docker'])
        self._sudo('enable docker service', ['systemctl', 'enable', 'docker'])
        self._sudo('add user to docker group', ['usermod', '-aG', DOCKER_GROUP, self.user])

        logger.info("Docker installed successfully!")
        logger.info(f"User '{self.user}' added to the '{DOCKER_GROUP}' group (effective after next login)")

    def ensure_daemon_active(self) -> None:
        if not self.runner.which('systemctl'):
            logger.debug("systemctl not available, skipping docker service check")
            return
        if self.runner.run(['sudo', 'systemctl', 'is-active', '--quiet', 'docker']).ok:
            return
        logger.info("Starting Docker service...")
        self._sudo('start docker service', ['systemctl', 'start', 'docker'])

    def select_invocation_mode(self, compose_base: Optional[Sequence[str]] = None) -> DockerCli:
        """
        Pick direct or sudo invocation for every later docker/compose call.

        Raises:
            DependencyInstallError: if docker is not usable even with sudo
        """
        compose_base = tuple(compose_base or ('docker', 'compose'))
        direct = self.runner.run(['docker', 'info'])
        access = classify_docker_access(direct)
        if access == ACCESS_OK:
            logger.debug("Docker accessible without sudo")
            return DockerCli(self.runner, elevated=False, compose_base=compose_base)

        elevated = self.runner.run(['sudo', 'docker', 'info'])
        if elevated.ok:
            if access == ACCESS_PERMISSION:
                logger.info(
                    "Using sudo for Docker commands "
                    "(group membership will take effect after logout/login)"
                )
            else:
                logger.warning(
                    f"Direct docker access failed ({access}: {_last_line(direct.stderr) or 'no output'}); "
                    "falling back to sudo"
                )
            return DockerCli(self.runner, elevated=True, compose_base=compose_base)

        if classify_docker_access(elevated) == ACCESS_DAEMON or access == ACCESS_DAEMON:
            raise DependencyInstallError('docker access', 'Docker daemon is not running')
        raise DependencyInstallError('docker access', _last_line(elevated.stderr) or 'docker info failed')

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _require_apt(self) -> None:
        if not self.runner.which('apt-get'):
            logger.warning("This tool installs Docker on Ubuntu/Debian systems only.")
            raise DependencyInstallError(
                'detect package manager',
                'apt-get not found; please install Docker and Docker Compose manually',
            )

    def _sudo(self, step: str, args: Sequence[str], input: Optional[str] = None) -> CommandResult:
        logger.debug(f"[{step}] sudo {' '.join(args)}")
        result = self.runner.run(['sudo', *args], input=input)
        if not result.ok:
            raise DependencyInstallError(step, _last_line(result.stderr) or f"exit {result.returncode}")
        return result

    def _query(self, step: str, args: Sequence[str]) -> str:
        result = self.runner.run(list(args))
        value = result.stdout.strip()
        if not result.ok or not value:
            raise DependencyInstallError(step, _last_line(result.stderr) or f"exit {result.returncode}")
        return value

    def _codename(self) -> str:
        result = self.runner.run(['lsb_release', '-cs'])
        if result.ok and result.stdout.strip():
            return result.stdout.strip()
        codename = self.os_release().get('VERSION_CODENAME', '')
        if not codename:
            raise DependencyInstallError('detect distribution codename', 'lsb_release unavailable')
        return codename
