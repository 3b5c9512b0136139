#!/usr/bin/env python3
"""
n8n-deploy engine.

Pipeline (strictly sequential, fail-fast):
1. Load .env into a DeployConfig
2. Preflight validation (all problems reported together)
3. Ensure Docker + Compose are installed, pick direct or sudo invocation
4. Resolve the public IP (probe, then EXTERNAL_IP override) and persist it
5. Render docker-compose.yml and stage the proxy build context
6. Certificate bootstrap (skipped when fullchain.pem already exists)
7. docker compose up -d and status report

Every step re-checks state before acting, so rerunning after an interruption
is safe.
"""

from __future__ import annotations

import argparse
import logging
import os
from importlib import metadata
from pathlib import Path
from typing import Optional, Sequence

from .certificates import CertificateBootstrapper, certificate_path
from .config_constants import (
    CERT_ROOT_DIR,
    CERT_WEBROOT_DIR,
    DB_PORT,
    DOCKER_COMPOSE_TEMPLATE,
    ENV_FILE,
    SERVICE_APP,
    SERVICE_DB,
    SERVICE_ORDER,
    SERVICE_PROXY,
    SKIP_DEPENDENCY_CHECK_ENV,
)
from .env_file import DeployConfig, EnvFileStore, ExternalIpRecorder
from .errors import DeployError
from .installer import DependencyInstaller
from .launcher import StackLauncher, prepare_stack_files
from .network import resolve_external_ip
from .runner import CommandRunner, DockerCli, SubprocessRunner
from .validation import validate_config

logger = logging.getLogger(__name__)


def get_cli_version() -> str:
    """Installed distribution version, or the package fallback when running from a checkout."""
    try:
        return metadata.version("n8n-deploy")
    except metadata.PackageNotFoundError:
        from . import __version__
        return __version__


def configure_logging(log_level: str = "INFO") -> None:
    """
    Configure logging module with specified level.
    """
    level_map = {
        "DEBUG": logging.DEBUG,
        "INFO": logging.INFO,
        "WARNING": logging.WARNING,
        "ERROR": logging.ERROR
    }

    level = level_map.get(str(log_level).upper(), logging.INFO)

    logging.basicConfig(
        level=level,
        format='[%(levelname)s] %(message)s',
        force=True  # Reconfigure if already configured
    )
    logger.debug(f"Logging configured: {logging.getLevelName(level)}")


def parse_arguments(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    """
    Parse command-line arguments for n8n-deploy.

    Supports arguments:
    1. -d, --dir <path> - Deployment directory (default: current directory)
    2. -e, --env-file <name> - Env file, relative to --dir (default: .env)
    3. --compose-template <name> - Compose template (default: docker-compose.yml.j2)
    4. --cert-root <path> - Certificate tree (default: <dir>/letsencrypt)
    5. --skip-install - Do not install Docker, only detect the invocation mode
    6. --dry-run - Validate and render files without touching the host
    7. --log-level <level> - Override LOG_LEVEL from the env file
    8. --wait <seconds> - How long to wait for services to run (default: 60)
    """
    parser = argparse.ArgumentParser(
        description='n8n-deploy: TLS bootstrap and start-up for the n8n + PostgreSQL + Nginx stack',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog='''
Examples:
  # Deploy from the current directory (reads ./.env)
  %(prog)s

  # Deploy a bundle elsewhere
  %(prog)s -d /srv/n8n

  # Check configuration and render docker-compose.yml only
  %(prog)s --dry-run --log-level DEBUG
        '''
    )

    parser.add_argument(
        '-d', '--dir',
        type=Path,
        default=Path.cwd(),
        metavar='PATH',
        help='Deployment directory containing .env and the compose template (default: current directory)'
    )

    parser.add_argument(
        '-e', '--env-file',
        type=str,
        default=ENV_FILE,
        metavar='NAME',
        help='Env file relative to --dir (default: .env)'
    )

    parser.add_argument(
        '--compose-template',
        type=str,
        default=DOCKER_COMPOSE_TEMPLATE,
        metavar='NAME',
        help='Compose template relative to --dir (default: docker-compose.yml.j2)'
    )

    parser.add_argument(
        '--cert-root',
        type=Path,
        default=None,
        metavar='PATH',
        help='Let\'s Encrypt directory (default: <dir>/letsencrypt)'
    )

    parser.add_argument(
        '--skip-install',
        action='store_true',
        help='Do not install Docker; only detect how to invoke it'
    )

    parser.add_argument(
        '--dry-run',
        action='store_true',
        help='Validate configuration and render files without changing the host'
    )

    parser.add_argument(
        '--log-level',
        type=str.upper,
        default=None,
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
        help='Override LOG_LEVEL from the env file'
    )

    parser.add_argument(
        '--version',
        action='version',
        version=f'%(prog)s {get_cli_version()}'
    )

    parser.add_argument(
        '--wait',
        type=float,
        default=60,
        metavar='SECONDS',
        help='Seconds to wait for all services to be running (default: 60)'
    )

    return parser.parse_args(argv)


def print_summary(config: DeployConfig, docker: DockerCli) -> None:
    compose_cmd = docker.describe(compose=True)
    docker_cmd = docker.describe(compose=False)
    print()
    print(f"✅ {SERVICE_APP} is now running with SSL certificates.")
    print()
    print(f"{SERVICE_APP} URL: https://{config.fqdn}")
    print()
    print("Database:")
    print(f"  Host: {SERVICE_DB}")
    print(f"  Port: {DB_PORT}")
    print(f"  Database: {config.db_name}")
    print(f"  User: {config.db_user}")
    print()
    print("Logs:")
    for service in (SERVICE_APP, SERVICE_DB, SERVICE_PROXY):
        print(f"  {service + ' logs':<15} → {compose_cmd} logs -f {service}")
    print(f"  (or use: {docker_cmd} logs -f <container_name>)")
    print()
    print("[INFO] SSL certificates are valid for 90 days. Renew manually when needed.")


def main_execution(
    working_dir: Path,
    env_file: str = ENV_FILE,
    compose_template: str = DOCKER_COMPOSE_TEMPLATE,
    cert_root: Optional[Path] = None,
    skip_install: bool = False,
    dry_run: bool = False,
    log_level: Optional[str] = None,
    wait: float = 60,
    runner: Optional[CommandRunner] = None,
    probe_urls: Optional[Sequence[str]] = None,
) -> dict:
    """
    Main execution pipeline for n8n-deploy.
    """
    result = {
        'status': 'success',
        'dry_run': dry_run,
    }
    configure_logging(log_level or "INFO")

    working_dir = Path(working_dir).resolve()
    cert_root = Path(cert_root) if cert_root else working_dir / CERT_ROOT_DIR
    if not cert_root.is_absolute():
        cert_root = working_dir / cert_root

    try:
        store = EnvFileStore(working_dir / env_file)
        config = store.load()
        if not log_level:
            configure_logging(config.log_level)
        logger.debug(f"Working directory: {working_dir}")

        validate_config(config)
        result['fqdn'] = config.fqdn

        if dry_run:
            logger.info("Dry-run mode: no packages, probes or containers will be touched")
            compose_path = prepare_stack_files(config, working_dir, compose_template, cert_root)
            present = certificate_path(cert_root, config.fqdn).is_file()
            logger.info(f"Compose file: {compose_path}")
            logger.info(
                f"Certificate for {config.fqdn}: "
                f"{'present' if present else 'missing, would be requested'}"
            )
            result['certificate_present'] = present
            return result

        runner = runner or SubprocessRunner()
        installer = DependencyInstaller(runner)
        if skip_install or os.getenv(SKIP_DEPENDENCY_CHECK_ENV) == '1':
            logger.info("Skipping dependency installation")
            docker = installer.select_invocation_mode(installer.find_compose())
        else:
            docker = installer.ensure()
        result['elevated'] = docker.elevated

        config = resolve_external_ip(config, ExternalIpRecorder(store), probe_urls=probe_urls)
        result['external_ip'] = config.external_ip

        (cert_root / CERT_WEBROOT_DIR).mkdir(parents=True, exist_ok=True)
        compose_path = prepare_stack_files(config, working_dir, compose_template, cert_root)
        docker = docker.with_compose_file(compose_path, working_dir, env_file=store.path)

        bootstrapper = CertificateBootstrapper(
            docker,
            cert_root,
            verbose=logger.isEnabledFor(logging.DEBUG),
        )
        result['certificate_state'] = bootstrapper.bootstrap(config.fqdn, config.email).value
        logger.debug(f"Certificate transitions: {bootstrapper.describe()}")

        launcher = StackLauncher(docker, services=SERVICE_ORDER, timeout=wait)
        result['services'] = {s.name: s.state for s in launcher.launch()}

        print_summary(config, docker)

    except DeployError as e:
        result['status'] = 'error'
        result['error'] = type(e).__name__
        result['message'] = str(e)
        logger.error(str(e))
        for line in e.remediation():
            logger.error(line)
    except Exception as e:
        result['status'] = 'error'
        result['error'] = type(e).__name__
        result['message'] = str(e)
        logger.error(f"Execution failed: {e}", exc_info=logger.isEnabledFor(logging.DEBUG))

    return result


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_arguments(argv)
    result = main_execution(
        working_dir=args.dir,
        env_file=args.env_file,
        compose_template=args.compose_template,
        cert_root=args.cert_root,
        skip_install=args.skip_install,
        dry_run=args.dry_run,
        log_level=args.log_level,
        wait=args.wait,
    )

    if result.get('status') == 'success':
        return 0
    return 1


if __name__ == '__main__':
    raise SystemExit(main())
