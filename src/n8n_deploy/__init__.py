"""n8n-deploy package."""

from __future__ import annotations

import os

from .engine import configure_logging, main, main_execution, parse_arguments


def _build_version() -> str:
    override = os.getenv("N8N_DEPLOY_BUILD_VERSION")
    if override:
        return override
    return "0.1.0"


__version__ = _build_version()

__all__ = [
    "configure_logging",
    "main",
    "main_execution",
    "parse_arguments",
    "__version__",
]
