#!/usr/bin/env python3
"""
Stack preparation and start-up.

prepare_stack_files() renders docker-compose.yml from its Jinja2 template and
stages the proxy entrypoint script into the proxy image build context.
StackLauncher brings the service set up and re-queries status until every
service is running. Start order (postgres, n8n, nginx) is enforced by compose
depends_on, not here; failed services are reported, never rolled back.
"""

from __future__ import annotations

import json
import logging
import shutil
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence

from jinja2 import Template, TemplateError

from . import proxy_template
from .config_constants import (
    CERT_ROOT_DIR,
    DOCKER_COMPOSE_OUTPUT,
    PROXY_BUILD_DIR,
    PROXY_SCRIPT_NAME,
    SERVICE_ORDER,
)
from .env_file import DeployConfig
from .errors import MissingFileError, ServiceStartError
from .runner import DockerCli

logger = logging.getLogger(__name__)

FAILED_STATES = {'exited', 'dead', 'removing'}


def render_jinja2(template_path: Path, context: dict) -> str:
    """Render a Jinja2 template file with context."""
    if not template_path.is_file():
        raise MissingFileError(str(template_path))

    template_content = template_path.read_text(encoding='utf-8')
    logger.debug(f"Rendering Jinja2 template: {template_path} ({len(template_content)} bytes)")
    try:
        return Template(template_content, keep_trailing_newline=True).render(**context)
    except TemplateError as e:
        logger.error(f"Failed to render template: {e}")
        raise TemplateError(f"Failed to render template {template_path}: {e}") from e


def prepare_stack_files(
    config: DeployConfig,
    working_dir: Path,
    compose_template: str,
    cert_root: Optional[Path] = None,
) -> Path:
    """
    Write docker-compose.yml and stage the proxy script. Returns the compose path.

    Secrets stay as ${VAR} references; compose resolves them from the env file.
    The proxy mounts cert_root, the same directory certbot writes into.
    """
    template_path = Path(compose_template)
    if not template_path.is_absolute():
        template_path = working_dir / template_path

    if template_path.suffix == '.j2':
        output_path = working_dir / DOCKER_COMPOSE_OUTPUT
        context = config.compose_context()
        context['cert_root'] = str(Path(cert_root or working_dir / CERT_ROOT_DIR).resolve())
        output_path.write_text(render_jinja2(template_path, context), encoding='utf-8')
        logger.info(f"Rendered {output_path.name} from {template_path.name}")
    else:
        if not template_path.is_file():
            raise MissingFileError(str(template_path))
        output_path = template_path

    build_dir = working_dir / PROXY_BUILD_DIR
    if build_dir.is_dir():
        shutil.copy2(proxy_template.__file__, build_dir / PROXY_SCRIPT_NAME)
        logger.debug(f"Staged proxy entrypoint into {build_dir}")
    else:
        logger.warning(f"Proxy build context {build_dir} not found; proxy image build may fail")

    return output_path


@dataclass(frozen=True)
class ServiceStatus:
    name: str
    state: str
    health: str = ''

    @property
    def running(self) -> bool:
        return self.state == 'running' and 'unhealthy' not in self.health.lower()

    @property
    def failed(self) -> bool:
        return self.state in FAILED_STATES or 'unhealthy' in self.health.lower()

    def describe(self) -> str:
        return f"{self.state} ({self.health})" if self.health else self.state


def parse_compose_ps(output: str) -> Dict[str, ServiceStatus]:
    """
    Parse `docker compose ps --format json`.

    Newer compose prints one JSON object per line, older releases a JSON array.
    """
    text = output.strip()
    if not text:
        return {}

    if text.startswith('['):
        try:
            entries = json.loads(text)
        except json.JSONDecodeError:
            logger.warning(f"Failed to parse container status: {text[:100]}")
            entries = []
    else:
        entries = []
        for line in text.splitlines():
            if not line.strip():
                continue
            try:
                entries.append(json.loads(line))
            except json.JSONDecodeError:
                logger.warning(f"Failed to parse container status: {line[:100]}")

    statuses = {}
    for entry in entries:
        name = entry.get('Service') or entry.get('Name', 'unknown')
        statuses[name] = ServiceStatus(
            name=name,
            state=str(entry.get('State', 'unknown')).lower(),
            health=str(entry.get('Health', '') or ''),
        )
    return statuses


class StackLauncher:
    def __init__(
        self,
        docker: DockerCli,
        services: Sequence[str] = SERVICE_ORDER,
        timeout: float = 60,
        interval: float = 5,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.docker = docker
        self.services = list(services)
        self.timeout = timeout
        self.interval = interval
        self.sleep = sleep
        self.clock = clock

    def launch(self) -> List[ServiceStatus]:
        """
        Raises:
            ServiceStartError: compose up failed or a service never reached running
        """
        logger.info(f"[STEP 4] Starting all services ({', '.join(self.services)})...")
        result = self.docker.compose('up', '-d', '--build', capture=False)
        if not result.ok:
            statuses = self.query_status()
            failed = [name for name in self.services if not self._is_running(statuses, name)]
            raise ServiceStartError(failed, f"compose up exited {result.returncode}")
        return self.wait_until_running()

    def query_status(self) -> Dict[str, ServiceStatus]:
        result = self.docker.compose('ps', '--all', '--format', 'json')
        if not result.ok:
            logger.warning(f"Failed to query container status: {result.stderr.strip()}")
            return {}
        return parse_compose_ps(result.stdout)

    @staticmethod
    def _is_running(statuses: Dict[str, ServiceStatus], name: str) -> bool:
        status = statuses.get(name)
        return status is not None and status.running

    def wait_until_running(self) -> List[ServiceStatus]:
        deadline = self.clock() + self.timeout
        while True:
            statuses = self.query_status()
            pending = [name for name in self.services if not self._is_running(statuses, name)]
            failed = [name for name in pending if name in statuses and statuses[name].failed]

            if not pending:
                logger.info("All services are running")
                for name in self.services:
                    logger.info(f"  ✓ {name}: {statuses[name].describe()}")
                return [statuses[name] for name in self.services]

            if failed or self.clock() >= deadline:
                for name in pending:
                    status = statuses.get(name)
                    logger.error(f"  ✗ {name}: {status.describe() if status else 'not created'}")
                raise ServiceStartError(pending)

            logger.info(f"Waiting for services: {', '.join(pending)}")
            self.sleep(self.interval)
