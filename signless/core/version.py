"""Build metadata for the /health endpoint."""

import os
from importlib.metadata import PackageNotFoundError, version
from typing import Dict


def get_version() -> str:
    """Version injected at build time, else the installed distribution's version."""
    build_version = os.getenv("BUILD_VERSION")
    if build_version:
        return build_version
    try:
        return version("signless-relay")
    except PackageNotFoundError:
        return "0.0.0-dev"


def get_version_info() -> Dict[str, str]:
    return {
        "version": get_version(),
        "commit": os.getenv("BUILD_COMMIT", "unknown"),
    }
