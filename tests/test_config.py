"""
Tests for settings loading.
"""

import pytest
from pydantic import ValidationError

from doorlock.config import SECRET_ENV, LockConfig, load_settings
from doorlock.errors import ConfigurationError


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    monkeypatch.delenv(SECRET_ENV, raising=False)
    monkeypatch.delenv("DOORLOCK_LOG_LEVEL", raising=False)
    # Keep load_dotenv() from picking up a developer's .env file.
    monkeypatch.chdir(tmp_path)


class TestLockConfig:
    """Tests for protocol parameter validation."""

    def test_hex_secret(self):
        config = LockConfig(secret="313233")
        assert config.secret.get_secret_value() == b"123"

    def test_secret_not_in_repr(self):
        assert "123456789" not in repr(LockConfig(secret=b"123456789"))

    def test_defaults(self):
        config = LockConfig(secret=b"k")
        assert (config.digits, config.min_digits, config.window, config.digest) == (6, 1, 10, "sha256")

    @pytest.mark.parametrize("kwargs", [
        {"secret": b""},
        {"secret": "zz"},
        {"secret": b"k", "digits": 4},
        {"secret": b"k", "window": -1},
        {"secret": b"k", "digits": 6, "min_digits": 7},
        {"secret": b"k", "digest": "md5"},
        {"secret": b"k", "digest": "not-a-hash"},
    ])
    def test_invalid(self, kwargs):
        with pytest.raises(ValidationError):
            LockConfig(**kwargs)

    def test_frozen(self):
        config = LockConfig(secret=b"k")
        with pytest.raises(ValidationError):
            config.window = 3


class TestLoadSettings:
    """Tests for YAML + environment layering."""

    def test_secret_from_environment(self, monkeypatch):
        monkeypatch.setenv(SECRET_ENV, b"123456789".hex())
        settings = load_settings()
        assert settings.lock.secret.get_secret_value() == b"123456789"
        assert settings.ble.device_name == "HC-05"

    def test_yaml_file(self, tmp_path):
        path = tmp_path / "doorlock.yaml"
        path.write_text(
            "lock:\n"
            "  secret: '6b6579'\n"
            "  window: 4\n"
            "server:\n"
            "  port: 9000\n"
            "log_level: DEBUG\n"
        )
        settings = load_settings(path)
        assert settings.lock.window == 4
        assert settings.server.port == 9000
        assert settings.log_level == "DEBUG"

    def test_environment_overrides_yaml(self, tmp_path, monkeypatch):
        path = tmp_path / "doorlock.yaml"
        path.write_text("lock:\n  secret: '6b6579'\n")
        monkeypatch.setenv(SECRET_ENV, "aabb")
        assert load_settings(path).lock.secret.get_secret_value() == b"\xaa\xbb"

    def test_overrides_skip_none(self, monkeypatch):
        monkeypatch.setenv(SECRET_ENV, "aabb")
        settings = load_settings(overrides={"server": {"host": None, "port": 1234}})
        assert settings.server.host == "127.0.0.1"
        assert settings.server.port == 1234

    def test_missing_secret(self):
        with pytest.raises(ConfigurationError):
            load_settings()

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("lock: [unclosed")
        with pytest.raises(ConfigurationError):
            load_settings(path)

    def test_invalid_values(self, tmp_path):
        path = tmp_path / "doorlock.yaml"
        path.write_text("lock:\n  secret: '6b6579'\n  digits: 3\n")
        with pytest.raises(ConfigurationError):
            load_settings(path)

    def test_unknown_digest_in_yaml(self, tmp_path):
        path = tmp_path / "doorlock.yaml"
        path.write_text("lock:\n  secret: '6b6579'\n  digest: sha999\n")
        with pytest.raises(ConfigurationError):
            load_settings(path)

    def test_overrides_into_empty_yaml_section(self, tmp_path):
        path = tmp_path / "doorlock.yaml"
        path.write_text("lock:\n  secret: '6b6579'\nserver:\nstorage:\n")
        settings = load_settings(path, overrides={"server": {"host": None, "port": 4321}, "storage": {"nvram_file": None}})
        assert settings.server.port == 4321
        assert settings.server.host == "127.0.0.1"
