"""
Configuration loading for the remediation API.

Settings are assembled once at startup from three layers, later layers
winning: the structured defaults declared below, an optional YAML file, and
environment variables (a ``.env`` file is loaded first). The merged result is
returned as a plain ``AppConfig`` instance that components receive through
their constructors and never modify.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Mapping, Optional

from dotenv import load_dotenv
from omegaconf import DictConfig, OmegaConf

_HERE = Path(__file__).resolve()
_CANDIDATE_CONFIG_PATHS = [parent / "config/config.yaml" for parent in _HERE.parents[:3]]

CONFIG_PATH_ENV = "A11Y_CONFIG_PATH"

# Environment variable -> dotted config key. The storage names match the
# bindings used by the deployed worker so existing secrets keep working.
ENV_OVERRIDES: Dict[str, str] = {
    "ACCOUNT_ID": "storage.account_id",
    "R2_ACCESS_KEY_ID": "storage.access_key_id",
    "R2_SECRET_ACCESS_KEY": "storage.secret_access_key",
    "BUCKET_NAME": "storage.bucket_name",
    "R2_ENDPOINT_URL": "storage.endpoint_url",
    "A11Y_DEFAULT_EXPIRES_IN": "storage.default_expires_in",
    "A11Y_DB_PATH": "database.path",
    "A11Y_LOG_LEVEL": "log_level",
}


@dataclass
class StorageConfig:
    account_id: str = ""
    access_key_id: str = ""
    secret_access_key: str = ""
    bucket_name: str = ""
    endpoint_url: Optional[str] = None
    region: str = "auto"
    default_expires_in: int = 3600

    def resolved_endpoint_url(self) -> Optional[str]:
        """Explicit endpoint if set, otherwise the account's R2 endpoint."""
        if self.endpoint_url:
            return self.endpoint_url
        if self.account_id:
            return f"https://{self.account_id}.r2.cloudflarestorage.com"
        return None


@dataclass
class DatabaseConfig:
    path: str = "data/audits.db"


@dataclass
class AppConfig:
    title: str = "A11y Document Remediation API"
    version: str = "2.0"
    log_level: str = "INFO"
    storage: StorageConfig = field(default_factory=StorageConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)


def find_config_file(environ: Mapping[str, str]) -> Optional[Path]:
    explicit = environ.get(CONFIG_PATH_ENV)
    if explicit:
        path = Path(explicit)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found at {path}")
        return path
    return next((path for path in _CANDIDATE_CONFIG_PATHS if path.exists()), None)


def _env_layer(environ: Mapping[str, str]) -> DictConfig:
    layer = OmegaConf.create()
    for env_name, dotted_key in ENV_OVERRIDES.items():
        value = environ.get(env_name)
        if value:
            OmegaConf.update(layer, dotted_key, value, merge=True)
    return layer


def load_config(environ: Optional[Mapping[str, str]] = None, use_dotenv: bool = True) -> AppConfig:
    """
    Build the application configuration.

    Args:
        environ: Environment mapping to read overrides from (default: os.environ)
        use_dotenv: Load a ``.env`` file into the process environment first

    Returns:
        The merged configuration as an ``AppConfig`` instance

    Raises:
        FileNotFoundError: If ``A11Y_CONFIG_PATH`` points to a missing file
        omegaconf.errors.ValidationError: If a value has the wrong type
    """
    if use_dotenv:
        load_dotenv()
    if environ is None:
        environ = os.environ

    layers = [OmegaConf.structured(AppConfig)]
    config_file = find_config_file(environ)
    if config_file is not None:
        layers.append(OmegaConf.load(config_file))
    layers.append(_env_layer(environ))

    merged = OmegaConf.merge(*layers)
    return OmegaConf.to_object(merged)  # type: ignore[return-value]
