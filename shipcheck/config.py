"""Configuration loading for shipcheck.

Service settings come from the environment and are read once at startup.
Repository settings come from an optional ``.shipcheck.yml`` at the root of
the checked-out repository.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence

import yaml

from .errors import ConfigError
from .models import RegistryCredentials

DEFAULT_PORT = 8080
DEFAULT_API_URL = "https://api.github.com"
DEFAULT_APPROVAL_KEYWORD = "approve"
REPOSITORY_CONFIG_NAME = ".shipcheck.yml"


@dataclass(frozen=True)
class ServiceConfig:
    """Process-wide settings. Immutable and shared by every background task."""

    app_id: int
    private_key: str
    registry: RegistryCredentials
    port: int = DEFAULT_PORT
    api_url: str = DEFAULT_API_URL
    image_version: Optional[str] = None
    approval_keyword: str = DEFAULT_APPROVAL_KEYWORD

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "ServiceConfig":
        """Build the configuration, reporting every missing value at once."""
        env = os.environ if environ is None else environ
        missing: List[str] = []

        raw_app_id = _get(env, "SHIPCHECK_APP_ID")
        if raw_app_id is None:
            missing.append("SHIPCHECK_APP_ID")

        private_key = _read_private_key(env)
        if private_key is None:
            missing.append("SHIPCHECK_PRIVATE_KEY")

        username = _get(env, "DOCKER_HUB_USERNAME")
        if username is None:
            missing.append("DOCKER_HUB_USERNAME")
        password = _get(env, "DOCKER_HUB_PASSWORD")
        if password is None:
            missing.append("DOCKER_HUB_PASSWORD")

        if missing:
            raise ConfigError(f"missing required environment variables: {', '.join(missing)}")

        try:
            app_id = int(raw_app_id)  # type: ignore[arg-type]
        except ValueError as exc:
            raise ConfigError(f"SHIPCHECK_APP_ID must be an integer, got {raw_app_id!r}") from exc

        raw_port = _get(env, "PORT")
        try:
            port = int(raw_port) if raw_port is not None else DEFAULT_PORT
        except ValueError as exc:
            raise ConfigError(f"PORT must be an integer, got {raw_port!r}") from exc

        return cls(
            app_id=app_id,
            private_key=private_key,  # type: ignore[arg-type]
            registry=RegistryCredentials(username=username, password=password),  # type: ignore[arg-type]
            port=port,
            api_url=(_get(env, "SHIPCHECK_API_URL") or DEFAULT_API_URL).rstrip("/"),
            image_version=_get(env, "SHIPCHECK_IMAGE_VERSION"),
            approval_keyword=_get(env, "SHIPCHECK_APPROVAL_KEYWORD") or DEFAULT_APPROVAL_KEYWORD,
        )

    def version_for(self, commit_sha: str) -> str:
        """Image tag for a build of ``commit_sha``."""
        if self.image_version:
            return self.image_version
        return commit_sha[:12]


@dataclass
class RepositoryConfig:
    """Per-repository layout settings."""

    manifest: str = "go.mod"
    entrypoint: str = "main.go"
    exclude_dirs: List[str] = field(default_factory=list)
    registry_prefix: str = "shipcheck"


def load_repository_config(root: Path) -> RepositoryConfig:
    """Load ``.shipcheck.yml`` from ``root``; absent file means defaults."""
    config_file = root / REPOSITORY_CONFIG_NAME
    if not config_file.exists():
        return RepositoryConfig()

    data = _read_yaml(config_file)
    if not isinstance(data, dict):
        raise ConfigError(f"{REPOSITORY_CONFIG_NAME} must contain a mapping at the root")

    config = RepositoryConfig()
    manifest = _as_str(data.get("manifest"))
    if manifest:
        config.manifest = manifest
    entrypoint = _as_str(data.get("entrypoint"))
    if entrypoint:
        config.entrypoint = entrypoint
    config.exclude_dirs = _as_str_list(data.get("exclude_dirs"))
    prefix = _as_str(data.get("registry_prefix"))
    if prefix:
        config.registry_prefix = prefix
    return config


def _read_yaml(path: Path) -> Dict[str, Any]:
    text = path.read_text(encoding="utf-8")
    if not text.strip():
        return {}
    try:
        loaded = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ConfigError(f"Failed to parse {path.name}: {exc}") from exc
    return loaded or {}


def _read_private_key(env: Mapping[str, str]) -> Optional[str]:
    inline = _get(env, "SHIPCHECK_PRIVATE_KEY")
    if inline is not None:
        # Keys passed through env files often carry escaped newlines.
        return inline.replace("\\n", "\n")
    key_path = _get(env, "SHIPCHECK_PRIVATE_KEY_PATH")
    if key_path is None:
        return None
    try:
        return Path(key_path).expanduser().read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"cannot read private key from {key_path}: {exc}") from exc


def _get(env: Mapping[str, str], key: str) -> Optional[str]:
    value = env.get(key)
    if value is None:
        return None
    value = value.strip()
    return value or None


def _as_str(value: Any) -> Optional[str]:
    return str(value) if isinstance(value, (str, int, float)) and not isinstance(value, bool) else None


def _as_str_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, Sequence):
        return [str(item) for item in value if isinstance(item, (str, int, float))]
    return []


__all__ = [
    "DEFAULT_PORT",
    "RepositoryConfig",
    "ServiceConfig",
    "load_repository_config",
]
