#!/usr/bin/env python3
"""
Reverse proxy template renderer.

Runs as the proxy container's entrypoint: substitutes the public hostname into
the static Nginx configuration, then hands over to the stock nginx entrypoint.

This module only uses the standard library. The launcher copies it into the
proxy image build context, where it runs without the rest of the package.
"""

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path
from typing import Callable, Mapping, Optional, Sequence

logger = logging.getLogger(__name__)

PLACEHOLDER = '${SUBDOMAIN}.${DOMAIN_NAME}'

DEFAULT_CONF_PATH = '/etc/nginx/conf.d/default.conf'
NGINX_ENTRYPOINT = '/docker-entrypoint.sh'


def build_fqdn(subdomain: str, domain: str) -> str:
    """
    Join subdomain and domain into the public hostname.

    Used for the certificate lookup path, the compose template and the proxy
    configuration, so all three always agree.

    Examples:
        >>> build_fqdn('n8n', 'example.com')
        'n8n.example.com'
        >>> build_fqdn(' n8n ', 'example.com ')
        'n8n.example.com'
    """
    return f"{(subdomain or '').strip()}.{(domain or '').strip()}".strip()


def render_proxy_config(text: str, subdomain: str, domain: str) -> str:
    """Replace every placeholder pair with the FQDN; unchanged if either value is unset."""
    if not (subdomain or '').strip() or not (domain or '').strip():
        return text
    return text.replace(PLACEHOLDER, build_fqdn(subdomain, domain))


def render_file(conf_path: Path, subdomain: str, domain: str) -> bool:
    """Render conf_path in place. Returns True when the file was rewritten."""
    if not conf_path.is_file():
        logger.warning(f"Proxy config not found, skipping substitution: {conf_path}")
        return False
    if not (subdomain or '').strip() or not (domain or '').strip():
        logger.warning("SUBDOMAIN or DOMAIN_NAME not set, skipping substitution")
        return False

    original = conf_path.read_text(encoding='utf-8')
    rendered = render_proxy_config(original, subdomain, domain)
    if rendered != original:
        conf_path.write_text(rendered, encoding='utf-8')
        logger.info(f"Rendered {conf_path} for {build_fqdn(subdomain, domain)}")
    return rendered != original


def run_entrypoint(
    argv: Sequence[str],
    env: Optional[Mapping[str, str]] = None,
    conf_path: str = DEFAULT_CONF_PATH,
    exec_fn: Callable[[str, list], None] = os.execv,
) -> None:
    """
    Render the proxy configuration and exec the nginx entrypoint.

    The exec always happens, even when rendering was skipped or failed, so that
    nginx reports its own configuration errors.
    """
    env = os.environ if env is None else env
    try:
        render_file(Path(conf_path), env.get('SUBDOMAIN', ''), env.get('DOMAIN_NAME', ''))
    except OSError as e:
        logger.error(f"Failed to render {conf_path}: {e}")

    exec_fn(NGINX_ENTRYPOINT, [NGINX_ENTRYPOINT, *argv])


def main() -> None:  # pragma: no cover
    logging.basicConfig(level=logging.INFO, format='[%(levelname)s] %(message)s')
    run_entrypoint(sys.argv[1:], conf_path=os.environ.get('PROXY_CONF_PATH', DEFAULT_CONF_PATH))


if __name__ == '__main__':
    main()
