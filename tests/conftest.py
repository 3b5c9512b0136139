"""
Shared fixtures: a recording fake CommandRunner and env file helpers.
"""

import sys
from pathlib import Path
from typing import Callable, List, Optional, Sequence

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))
from n8n_deploy.runner import CommandResult, CommandRunner  # noqa: E402

REPO_ROOT = Path(__file__).resolve().parents[1]
DEPLOY_DIR = REPO_ROOT / "deploy"


def _contains(args: Sequence[str], pattern: Sequence[str]) -> bool:
    n = len(pattern)
    return any(list(args[i:i + n]) == list(pattern) for i in range(len(args) - n + 1))


class FakeRunner(CommandRunner):
    """
    Records every command. Responses are registered with on(); the most
    recently registered matching rule wins, unmatched commands succeed.

    prefix=True matches the start of the argument list, prefix=False any
    contiguous run of arguments.
    """

    def __init__(self, available: Sequence[str] = ()) -> None:
        self.calls: List[List[str]] = []
        self.inputs: List[Optional[str]] = []
        self.available = set(available)
        self._rules = []

    def on(
        self,
        *pattern: str,
        returncode: int = 0,
        stdout: str = "",
        stderr: str = "",
        prefix: bool = True,
        action: Optional[Callable[[List[str]], None]] = None,
    ) -> "FakeRunner":
        self._rules.append((list(pattern), prefix, CommandResult(returncode, stdout, stderr), action))
        return self

    def run(self, args, *, capture=True, input=None, cwd=None) -> CommandResult:
        args = list(args)
        self.calls.append(args)
        self.inputs.append(input)
        for pattern, prefix, result, action in reversed(self._rules):
            matched = args[:len(pattern)] == pattern if prefix else _contains(args, pattern)
            if matched:
                if action:
                    action(args)
                return result
        return CommandResult(0)

    def which(self, name: str) -> Optional[str]:
        return f"/usr/bin/{name}" if name in self.available else None

    def called(self, *pattern: str) -> List[List[str]]:
        return [call for call in self.calls if _contains(call, pattern)]


@pytest.fixture
def fake_runner():
    return FakeRunner()


VALID_ENV = """\
DOMAIN_NAME=example.com
SUBDOMAIN=n8n
EMAIL=a@example.com
DB_POSTGRESDB_PASSWORD=secret
"""


@pytest.fixture
def env_path(tmp_path):
    path = tmp_path / ".env"
    path.write_text(VALID_ENV, encoding="utf-8")
    return path


@pytest.fixture
def deploy_dir(tmp_path):
    """A working directory laid out like deploy/ with a valid .env."""
    (tmp_path / ".env").write_text(VALID_ENV, encoding="utf-8")
    template = DEPLOY_DIR / "docker-compose.yml.j2"
    (tmp_path / "docker-compose.yml.j2").write_text(template.read_text(encoding="utf-8"), encoding="utf-8")
    (tmp_path / "nginx").mkdir()
    return tmp_path
