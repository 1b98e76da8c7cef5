"""Avatar fetch configuration from environment variables or YAML."""

import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
    "AppleWebKit/537.36 (KHTML, like Gecko)"
)


@dataclass
class AvatarFetchConfig:
    """Transport and orchestration settings.

    Load from environment using AvatarFetchConfig.from_env() or from a
    YAML file with load_config(). All timing values in seconds.
    """

    # Transport
    timeout_seconds: float = 30.0
    max_connections: int = 20
    max_connections_per_host: int = 10
    user_agent: str = DEFAULT_USER_AGENT

    # Orchestration
    poll_interval_seconds: float = 0.01
    enable_fallback: bool = True

    def __post_init__(self) -> None:
        if self.timeout_seconds <= 0:
            raise ValueError(
                f"timeout_seconds must be positive, got {self.timeout_seconds}"
            )
        if self.poll_interval_seconds < 0:
            raise ValueError(
                f"poll_interval_seconds must not be negative, got {self.poll_interval_seconds}"
            )
        if self.max_connections < 1 or self.max_connections_per_host < 1:
            raise ValueError("Connection limits must be at least 1")
        if not self.user_agent:
            raise ValueError("user_agent must not be empty")

    @classmethod
    def from_env(cls) -> "AvatarFetchConfig":
        """Load configuration from environment variables.

        Optional environment variables (with defaults):
            AVATAR_TIMEOUT_SECONDS: 30 (default)
            AVATAR_MAX_CONNECTIONS: 20 (default)
            AVATAR_MAX_CONNECTIONS_PER_HOST: 10 (default)
            AVATAR_USER_AGENT: desktop browser string (default)
            AVATAR_POLL_INTERVAL_SECONDS: 0.01 (default)
            AVATAR_ENABLE_FALLBACK: true (default)

        Raises:
            ValueError: If a variable holds an invalid value
        """
        return cls(**_env_overrides())

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


def _parse_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in ("1", "true", "yes", "on"):
        return True
    if lowered in ("0", "false", "no", "off"):
        return False
    raise ValueError(f"Invalid boolean value: {value!r}")


_ENV_VARS = {
    "timeout_seconds": ("AVATAR_TIMEOUT_SECONDS", float),
    "max_connections": ("AVATAR_MAX_CONNECTIONS", int),
    "max_connections_per_host": ("AVATAR_MAX_CONNECTIONS_PER_HOST", int),
    "user_agent": ("AVATAR_USER_AGENT", str),
    "poll_interval_seconds": ("AVATAR_POLL_INTERVAL_SECONDS", float),
    "enable_fallback": ("AVATAR_ENABLE_FALLBACK", _parse_bool),
}


def _env_overrides() -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    for name, (env_var, parser) in _ENV_VARS.items():
        raw = os.getenv(env_var)
        if raw is None or raw == "":
            continue
        overrides[name] = parser(raw)
    return overrides


def load_config(path: Optional[Path] = None) -> AvatarFetchConfig:
    """Load configuration from a YAML file, then apply environment overrides.

    The file may hold the settings at top level or under an `avatar:` key.
    Unknown keys are rejected.

    Args:
        path: YAML file path (None = environment and defaults only)

    Returns:
        AvatarFetchConfig

    Raises:
        FileNotFoundError: If path does not exist
        ValueError: If the file has unknown keys or invalid values
    """
    data: Dict[str, Any] = {}
    if path is not None:
        with open(path, "r", encoding="utf-8") as f:
            loaded = yaml.safe_load(f) or {}
        if not isinstance(loaded, dict):
            raise ValueError(f"Config file {path} must contain a mapping")
        data = loaded.get("avatar", loaded) or {}

        known = {f.name for f in fields(AvatarFetchConfig)}
        unknown = set(data) - known
        if unknown:
            raise ValueError(f"Unknown config keys: {sorted(unknown)}")

    data.update(_env_overrides())
    return AvatarFetchConfig(**data)
