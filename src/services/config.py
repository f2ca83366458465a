import logging
import os
from dataclasses import dataclass
from typing import Mapping, Optional

from dotenv import load_dotenv

from services.errors import ConfigurationError

# Log files go to src/logs unless LOG_DIR says otherwise
DEFAULT_LOG_DIR = os.path.join(os.path.dirname(os.path.dirname(__file__)), 'logs')


@dataclass(frozen=True)
class Settings:
    organization: Optional[str] = None
    project: Optional[str] = None
    pat: Optional[str] = None
    pr_project: Optional[str] = None
    api_version: str = "7.1"
    timeout: float = 30.0
    retries: int = 3
    fetch_workers: int = 4
    log_level: int = logging.INFO
    log_dir: str = DEFAULT_LOG_DIR
    port: int = 3001

    @property
    def configured(self) -> bool:
        return bool(self.organization and self.project and self.pat)

    @property
    def default_team(self) -> str:
        return f"{self.project} Team"

    def require(self) -> "Settings":
        """Return self, or raise ConfigurationError if ADO coordinates are missing"""
        if not self.configured:
            missing = [name for name, value in (
                ("ADO_ORG", self.organization),
                ("ADO_PROJECT", self.project),
                ("ADO_PAT", self.pat),
            ) if not value]
            raise ConfigurationError(f"Missing required environment variables: {', '.join(missing)}")
        return self


def _int(env: Mapping[str, str], name: str, default: int) -> int:
    value = env.get(name)
    if value in (None, ""):
        return default
    try:
        return int(value)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {value!r}")


def _float(env: Mapping[str, str], name: str, default: float) -> float:
    value = env.get(name)
    if value in (None, ""):
        return default
    try:
        return float(value)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {value!r}")


def _log_level(value: Optional[str]) -> int:
    if not value:
        return logging.INFO
    level = logging.getLevelName(value.upper())
    if not isinstance(level, int):
        raise ConfigurationError(f"Unknown LOG_LEVEL {value!r}")
    return level


def load_settings(env: Optional[Mapping[str, str]] = None, dotenv_path: Optional[str] = None) -> Settings:
    """
    Build Settings from environment variables

    Args:
        env: Mapping to read from; defaults to os.environ after loading .env
        dotenv_path: Optional explicit path of the .env file

    Returns:
        Settings for the process
    """
    if env is None:
        load_dotenv(dotenv_path)
        env = os.environ

    project = env.get("ADO_PROJECT") or None
    return Settings(
        organization=env.get("ADO_ORG") or None,
        project=project,
        pat=env.get("ADO_PAT") or None,
        pr_project=env.get("ADO_PROJECT_PRS") or project,
        api_version=env.get("ADO_API_VERSION") or "7.1",
        timeout=_float(env, "ADO_TIMEOUT", 30.0),
        retries=_int(env, "ADO_RETRIES", 3),
        fetch_workers=max(1, _int(env, "ADO_FETCH_WORKERS", 4)),
        log_level=_log_level(env.get("LOG_LEVEL")),
        log_dir=env.get("LOG_DIR") or DEFAULT_LOG_DIR,
        port=_int(env, "PORT", 3001),
    )
