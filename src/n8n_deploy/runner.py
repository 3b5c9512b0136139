#!/usr/bin/env python3
"""
External command execution.

Everything that shells out (apt, systemctl, docker, docker compose, certbot)
goes through a CommandRunner so the sequencing logic can be exercised with a
fake runner in tests.
"""

from __future__ import annotations

import dataclasses
import logging
import shlex
import shutil
import subprocess
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CommandResult:
    returncode: int
    stdout: str = ''
    stderr: str = ''

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class CommandRunner(ABC):
    """Runs a command and reports (exit code, stdout, stderr)."""

    @abstractmethod
    def run(
        self,
        args: Sequence[str],
        *,
        capture: bool = True,
        input: Optional[str] = None,
        cwd: Optional[Path] = None,
    ) -> CommandResult:
        """Run args. With capture=False output goes straight to the terminal."""

    @abstractmethod
    def which(self, name: str) -> Optional[str]:
        """Return the executable path for name, or None."""


class SubprocessRunner(CommandRunner):
    def run(
        self,
        args: Sequence[str],
        *,
        capture: bool = True,
        input: Optional[str] = None,
        cwd: Optional[Path] = None,
    ) -> CommandResult:
        cmd = list(args)
        logger.debug(f"Running: {shlex.join(cmd)}")
        try:
            result = subprocess.run(
                cmd,
                capture_output=capture,
                text=True,
                input=input,
                cwd=cwd,
            )
        except FileNotFoundError:
            return CommandResult(127, '', f"Command not found: {cmd[0]}")

        if result.returncode != 0:
            logger.debug(f"  exit {result.returncode}: {shlex.join(cmd)}")
        return CommandResult(result.returncode, result.stdout or '', result.stderr or '')

    def which(self, name: str) -> Optional[str]:
        return shutil.which(name)


@dataclass(frozen=True)
class DockerCli:
    """
    Docker and compose invocation mode chosen once by the installer.

    elevated prefixes every call with sudo; compose_base is either the
    plugin form ('docker', 'compose') or the standalone 'docker-compose'.
    """

    runner: CommandRunner
    elevated: bool = False
    compose_base: tuple = ('docker', 'compose')
    compose_file: Optional[Path] = None
    env_file: Optional[Path] = None
    cwd: Optional[Path] = None

    @property
    def _prefix(self) -> list:
        return ['sudo'] if self.elevated else []

    def docker_args(self, *args: str) -> list:
        return [*self._prefix, 'docker', *args]

    def compose_args(self, *args: str) -> list:
        cmd = [*self._prefix, *self.compose_base]
        if self.compose_file is not None:
            cmd += ['-f', str(self.compose_file)]
        if self.env_file is not None:
            cmd += ['--env-file', str(self.env_file)]
        return [*cmd, *args]

    def docker(self, *args: str, capture: bool = True) -> CommandResult:
        return self.runner.run(self.docker_args(*args), capture=capture, cwd=self.cwd)

    def compose(self, *args: str, capture: bool = True) -> CommandResult:
        return self.runner.run(self.compose_args(*args), capture=capture, cwd=self.cwd)

    def with_compose_file(
        self,
        compose_file: Path,
        cwd: Optional[Path] = None,
        env_file: Optional[Path] = None,
    ) -> "DockerCli":
        return dataclasses.replace(
            self,
            compose_file=compose_file,
            env_file=env_file,
            cwd=cwd or compose_file.parent,
        )

    def describe(self, compose: bool = True) -> str:
        """Human-readable command prefix for log hints."""
        parts = [*self._prefix, *(self.compose_base if compose else ('docker',))]
        return ' '.join(parts)
