from pathlib import Path

import pytest

from dmcertsync.config import load_settings
from dmcertsync.errors import ConfigError


def test_defaults() -> None:
    settings = load_settings()
    assert settings.provider_id == "MS DM Server"
    assert settings.store == "registry"
    assert settings.certificates == "system"


def test_file_values_and_overrides(tmp_path: Path) -> None:
    path = tmp_path / "dmcertsync.yaml"
    path.write_text(
        "store: sqlite\nstore_path: /tmp/lab.db\nissuer_pattern: Contoso MDM CA\n",
        encoding="utf-8",
    )
    settings = load_settings(path, store_path="/tmp/other.db", issuer_pattern=None)

    assert settings.store == "sqlite"
    assert settings.store_path == "/tmp/other.db"
    assert settings.issuer_pattern == "Contoso MDM CA"


def test_unknown_keys_are_rejected(tmp_path: Path) -> None:
    path = tmp_path / "dmcertsync.yaml"
    path.write_text("retries: 3\n", encoding="utf-8")
    with pytest.raises(ConfigError):
        load_settings(path)


def test_invalid_backend_is_rejected() -> None:
    with pytest.raises(ConfigError):
        load_settings(store="ldap")


def test_non_mapping_file_is_rejected(tmp_path: Path) -> None:
    path = tmp_path / "dmcertsync.json"
    path.write_text("[1, 2]", encoding="utf-8")
    with pytest.raises(ConfigError):
        load_settings(path)


def test_invalid_issuer_pattern_is_rejected() -> None:
    with pytest.raises(ConfigError, match="issuer_pattern"):
        load_settings(issuer_pattern="Intune (MDM")
