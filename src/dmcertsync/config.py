from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from dmcertsync.certs import DEFAULT_ISSUER_PATTERN
from dmcertsync.enrollment import MDM_PROVIDER_ID
from dmcertsync.errors import ConfigError
from dmcertsync.oplog import DEFAULT_LOG_DIR
from dmcertsync.store import DEFAULT_DB_PATH


class Settings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    provider_id: str = Field(MDM_PROVIDER_ID, min_length=1)
    issuer_pattern: str = Field(DEFAULT_ISSUER_PATTERN, min_length=1)
    store: Literal["registry", "sqlite"] = "registry"
    store_path: str = DEFAULT_DB_PATH
    certificates: str = Field("system", description="'system' or a certificate JSON file")
    log_dir: str = DEFAULT_LOG_DIR

    @field_validator("issuer_pattern")
    @classmethod
    def _compiles(cls, value: str) -> str:
        try:
            re.compile(value)
        except re.error as exc:
            raise ValueError(f"issuer_pattern is not a valid regular expression: {exc}") from exc
        return value

    @property
    def log_dir_path(self) -> Path:
        return Path(self.log_dir).expanduser()


def _read_config_file(path: Path) -> dict[str, Any]:
    text = path.read_text(encoding="utf-8")
    try:
        data = json.loads(text) if path.suffix.lower() == ".json" else yaml.safe_load(text)
    except (json.JSONDecodeError, yaml.YAMLError) as exc:
        raise ConfigError(f"Could not parse {path}: {exc}") from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"{path} must contain a mapping")
    return data


def load_settings(path: Path | None = None, **overrides: Any) -> Settings:
    """Settings from an optional YAML/JSON file; non-None overrides win over file values."""
    data: dict[str, Any] = _read_config_file(path) if path else {}
    data.update({key: value for key, value in overrides.items() if value is not None})
    try:
        return Settings.model_validate(data)
    except ValidationError as exc:
        raise ConfigError(str(exc)) from exc
