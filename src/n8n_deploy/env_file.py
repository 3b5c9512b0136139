#!/usr/bin/env python3
"""
Configuration loader for the deployment .env file.

The file holds KEY=VALUE lines. The parsed values become an immutable
DeployConfig; the only field that is ever written back is EXTERNAL_IP, through
ExternalIpRecorder.
"""

from __future__ import annotations

import dataclasses
import logging
import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Mapping

from .config_constants import (
    DEFAULTS,
    ENV_EXAMPLE_FILE,
    KEY_DB_NAME,
    KEY_DB_PASSWORD,
    KEY_DB_USER,
    KEY_DOMAIN,
    KEY_EMAIL,
    KEY_EXTERNAL_IP,
    KEY_LOG_LEVEL,
    KEY_SUBDOMAIN,
    KEY_TIMEZONE,
)
from .errors import MissingFileError
from .proxy_template import build_fqdn

logger = logging.getLogger(__name__)


def _strip_inline_comment(text: str) -> str:
    """Cut at the first unescaped '#'. A backslash-escaped '\\#' becomes '#'."""
    out = []
    i = 0
    while i < len(text):
        char = text[i]
        if char == '\\' and text[i + 1:i + 2] == '#':
            out.append('#')
            i += 2
            continue
        if char == '#':
            break
        out.append(char)
        i += 1
    return ''.join(out).strip()


def parse_value(raw: str) -> str:
    """
    Normalize the right-hand side of a KEY=VALUE line.

    A value opening with a quote keeps everything up to the matching quote,
    including '#'; anything after the closing quote is treated as a comment.
    Unquoted values lose inline comments and surrounding whitespace.
    """
    raw = raw.strip()
    if raw[:1] in ('"', "'"):
        end = raw.find(raw[0], 1)
        if end != -1:
            rest = raw[end + 1:].strip()
            if not rest or rest.startswith('#'):
                return raw[1:end]
    return _strip_inline_comment(raw)


def _split_key(line: str) -> str:
    key = line.split('=', 1)[0].strip()
    if key.startswith('export '):
        key = key[len('export '):].strip()
    return key


def load_env_file(env_file: str | os.PathLike) -> Dict[str, str]:
    """
    Load KEY=VALUE pairs from an env file.

    Raises:
        MissingFileError: If env_file doesn't exist
    """
    path = Path(env_file)
    if not path.is_file():
        example = path.with_name(ENV_EXAMPLE_FILE)
        raise MissingFileError(str(path), str(example) if example.is_file() else None)

    env_vars: Dict[str, str] = {}
    with open(path, 'r', encoding='utf-8') as f:
        for line_num, line in enumerate(f, 1):
            line = line.strip()

            # Skip empty lines and comments
            if not line or line.startswith('#'):
                continue

            if '=' not in line:
                logger.warning(f"Skipping invalid line {line_num} in {path}: '{line}'")
                continue

            key = _split_key(line)
            if not key:
                logger.warning(f"Skipping line {line_num} in {path}: empty key")
                continue

            env_vars[key] = parse_value(line.split('=', 1)[1])

    logger.debug(f"Loaded {len(env_vars)} variable(s) from {path}")
    return env_vars


def persist_env_vars(env_file: str | os.PathLike, new_vars: Mapping[str, str]) -> None:
    """
    Persist or update key=value pairs into the env_file. If a key exists, replace its value.
    Otherwise, append the new key=value at the end.
    """
    env_file = str(env_file)
    lines = []
    if os.path.isfile(env_file):
        with open(env_file, 'r', encoding='utf-8') as f:
            lines = f.readlines()

    key_line_map = {}
    for idx, raw in enumerate(lines):
        s = raw.strip()
        if not s or s.startswith('#') or '=' not in s:
            continue
        key_line_map[_split_key(s)] = idx

    if lines and not lines[-1].endswith('\n'):
        lines[-1] += '\n'

    for k, v in new_vars.items():
        entry = f"{k}={v}\n"
        if k in key_line_map:
            lines[key_line_map[k]] = entry
        else:
            lines.append(entry)

    # Write back atomically
    tmp = env_file + '.tmp'
    fd = os.open(tmp, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, 'w', encoding='utf-8') as f:
        f.writelines(lines)
    if os.path.isfile(env_file):
        # Preserve the existing mode (often 0600)
        shutil.copymode(env_file, tmp)
    os.replace(tmp, env_file)
    logger.debug(f"Persisted {len(new_vars)} variable(s) into {env_file}")


@dataclass(frozen=True)
class DeployConfig:
    """Validated-at-use view of the env file. Never mutated in place."""

    domain_name: str
    subdomain: str
    email: str
    db_password: str
    db_user: str = DEFAULTS[KEY_DB_USER]
    db_name: str = DEFAULTS[KEY_DB_NAME]
    timezone: str = DEFAULTS[KEY_TIMEZONE]
    external_ip: str = DEFAULTS[KEY_EXTERNAL_IP]
    log_level: str = DEFAULTS[KEY_LOG_LEVEL]
    values: Mapping[str, str] = field(default_factory=dict, repr=False, compare=False)

    @classmethod
    def from_values(cls, values: Mapping[str, str]) -> "DeployConfig":
        def get(key: str) -> str:
            return (values.get(key) or '').strip()

        def get_or_default(key: str) -> str:
            return get(key) or DEFAULTS[key]

        return cls(
            domain_name=get(KEY_DOMAIN),
            subdomain=get(KEY_SUBDOMAIN),
            email=get(KEY_EMAIL),
            db_password=get(KEY_DB_PASSWORD),
            db_user=get_or_default(KEY_DB_USER),
            db_name=get_or_default(KEY_DB_NAME),
            timezone=get_or_default(KEY_TIMEZONE),
            external_ip=get(KEY_EXTERNAL_IP),
            log_level=get_or_default(KEY_LOG_LEVEL).upper(),
            values=dict(values),
        )

    @property
    def fqdn(self) -> str:
        return build_fqdn(self.subdomain, self.domain_name)

    def compose_context(self) -> dict:
        """Non-secret values exposed to the docker-compose template."""
        return {
            'fqdn': self.fqdn,
            'domain_name': self.domain_name,
            'subdomain': self.subdomain,
            'db_user': self.db_user,
            'db_name': self.db_name,
            'timezone': self.timezone,
        }


class EnvFileStore:
    """Read access to the env file backing a DeployConfig."""

    def __init__(self, path: str | os.PathLike) -> None:
        self.path = Path(path)

    def load(self) -> DeployConfig:
        logger.info(f"Loading configuration from {self.path}")
        return DeployConfig.from_values(load_env_file(self.path))


class ExternalIpRecorder:
    """
    Write capability for the single mutable field, EXTERNAL_IP.

    Only the network identity resolver is handed one of these.
    """

    def __init__(self, store: EnvFileStore) -> None:
        self._store = store

    def record(self, config: DeployConfig, ip: str) -> DeployConfig:
        """Persist ip when it differs from the stored value; return the updated record."""
        if config.external_ip == ip:
            logger.info(f"Using EXTERNAL_IP from {self._store.path.name}: {ip}")
            return config

        logger.info(f"Updating {KEY_EXTERNAL_IP} in {self._store.path}...")
        persist_env_vars(self._store.path, {KEY_EXTERNAL_IP: ip})
        values = dict(config.values)
        values[KEY_EXTERNAL_IP] = ip
        return dataclasses.replace(config, external_ip=ip, values=values)
