"""
Initializes the Dynaconf settings object for the release tracker.
This module is the single source of truth for all configuration.
"""

from pathlib import Path
from dynaconf import Dynaconf

PROJECT_ROOT = Path(__file__).parent.parent

settings = Dynaconf(
    root_path=PROJECT_ROOT,
    settings_files=["config/settings.toml"],
    secrets=["config/.secrets.toml"],
    envvar_prefix=False,
)


def project_path(value: str) -> Path:
    """Resolves a configured path against the project root."""
    return PROJECT_ROOT / value
