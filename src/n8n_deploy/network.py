#!/usr/bin/env python3
"""Public IPv4 detection with probe fallback and EXTERNAL_IP override."""

from __future__ import annotations

import ipaddress
import logging
import os
from typing import Optional, Sequence

import requests

from .config_constants import DEFAULT_IP_DETECT_URLS, IP_DETECT_TIMEOUT, IP_DETECT_URLS_ENV
from .env_file import DeployConfig, ExternalIpRecorder
from .errors import NetworkIdentityError

logger = logging.getLogger(__name__)


def probe_urls_from_env() -> list[str]:
    """Probe endpoints, overridable via N8N_DEPLOY_IP_DETECT_URLS (comma separated)."""
    urls = os.environ.get(IP_DETECT_URLS_ENV)
    if urls:
        return [u.strip() for u in urls.split(',') if u.strip()]
    return list(DEFAULT_IP_DETECT_URLS)


def probe_external_ip(url: str, timeout: float = IP_DETECT_TIMEOUT) -> Optional[str]:
    """Query one address-echo service. Returns None on any failure or non-IPv4 body."""
    try:
        response = requests.get(url, timeout=timeout, headers={'Accept': 'text/plain'})
        response.raise_for_status()
    except requests.RequestException as e:
        logger.debug(f"IP probe {url} failed: {e}")
        return None

    candidate = response.text.strip()
    try:
        return str(ipaddress.IPv4Address(candidate))
    except ValueError:
        logger.debug(f"IP probe {url} returned a non-IPv4 answer: {candidate[:60]!r}")
        return None


def detect_external_ip(urls: Sequence[str], timeout: float = IP_DETECT_TIMEOUT) -> Optional[str]:
    for url in urls:
        ip = probe_external_ip(url, timeout=timeout)
        if ip:
            return ip
    return None


def resolve_external_ip(
    config: DeployConfig,
    recorder: ExternalIpRecorder,
    probe_urls: Optional[Sequence[str]] = None,
    timeout: float = IP_DETECT_TIMEOUT,
) -> DeployConfig:
    """
    Determine the host's public IPv4 address and record it.

    Raises:
        NetworkIdentityError: when no probe answers and EXTERNAL_IP is unset
    """
    logger.info("Detecting public IP...")
    urls = list(probe_urls) if probe_urls is not None else probe_urls_from_env()
    detected = detect_external_ip(urls, timeout=timeout)

    if detected:
        logger.info(f"Detected external IP: {detected}")
    else:
        logger.warning("Could not detect external IP automatically.")
        if not config.external_ip:
            raise NetworkIdentityError("EXTERNAL_IP is not set and could not be detected.")
        logger.info(f"Using EXTERNAL_IP from configuration: {config.external_ip}")
        detected = config.external_ip

    return recorder.record(config, detected)
