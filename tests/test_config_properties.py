"""
Property-based tests for configuration loading.

Configuration files are validated against the JSON schema, reloaded when
they change on disk, and overridden by deployment environment variables.
"""

import json
import os
import tempfile
from unittest import mock

import pytest
from hypothesis import given, strategies as st
from hypothesis import settings

from config import ConfigManager, SystemConfig, CONFIG_SCHEMA
from tender_monitor.utils.errors import ConfigurationError


ENV_KEYS = (
    "DB_TYPE", "DB_HOST", "DB_PORT", "DB_NAME", "DB_USER", "DB_PASSWORD",
    "SQLITE_PATH", "BROWSER_HEADLESS", "MAX_CONCURRENT", "LOG_LEVEL",
)

NAME_CHARS = st.characters(whitelist_categories=('Lu', 'Ll', 'Nd'), whitelist_characters='_-.')


def clean_env():
    """Patch os.environ with every override variable removed."""
    patcher = mock.patch.dict(os.environ)
    patcher.start()
    for key in ENV_KEYS:
        os.environ.pop(key, None)
    return patcher


@st.composite
def database_config_strategy(draw):
    """Generate valid database configuration."""
    return {
        "db_type": draw(st.sampled_from(["sqlite", "postgresql"])),
        "sqlite_path": draw(st.text(min_size=1, max_size=40, alphabet=NAME_CHARS)) + ".db",
        "host": draw(st.text(min_size=1, max_size=50, alphabet=NAME_CHARS)),
        "port": draw(st.integers(min_value=1, max_value=65535)),
        "database": draw(st.text(min_size=1, max_size=50, alphabet=NAME_CHARS)),
        "username": draw(st.text(min_size=1, max_size=50, alphabet=NAME_CHARS)),
        "password": draw(st.text(max_size=100)),
        "pool_size": draw(st.integers(min_value=1, max_value=100))
    }


@st.composite
def system_config_strategy(draw):
    """Generate valid system configuration."""
    return {
        "database": draw(database_config_strategy()),
        "browser": {
            "headless": draw(st.booleans()),
            "navigation_timeout_ms": draw(st.integers(min_value=1000, max_value=300000)),
            "captcha_reload_wait_ms": draw(st.integers(min_value=0, max_value=60000)),
            "submission_delay_ms": draw(st.integers(min_value=0, max_value=60000))
        },
        "worker_pool": {
            "max_concurrent": draw(st.integers(min_value=1, max_value=64)),
            "task_timeout": draw(st.floats(min_value=0.5, max_value=7200.0)),
            "retry_attempts": draw(st.integers(min_value=0, max_value=10)),
            "retry_delay": draw(st.floats(min_value=0.0, max_value=60.0))
        },
        "sessions": {
            "flush_interval": draw(st.floats(min_value=0.1, max_value=3600.0)),
            "max_retained_sessions": draw(st.integers(min_value=1, max_value=100000))
        },
        "log_level": draw(st.sampled_from(["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"])),
        "log_file": draw(st.one_of(st.none(), st.just("logs/test.log")))
    }


def write_config(data) -> str:
    with tempfile.NamedTemporaryFile(mode='w', suffix='.json', delete=False, encoding='utf-8') as temp_file:
        json.dump(data, temp_file, indent=2)
        return temp_file.name


def rewrite_config(path: str, data) -> None:
    """Overwrite a config file and move its mtime forward."""
    before = os.stat(path).st_mtime
    with open(path, 'w', encoding='utf-8') as f:
        json.dump(data, f, indent=2)
    os.utime(path, (before + 5, before + 5))


class TestConfigurationReloadConsistency:
    """Test configuration reload consistency property."""

    def setup_method(self):
        self.env = clean_env()

    def teardown_method(self):
        self.env.stop()

    @given(config_data=system_config_strategy())
    @settings(max_examples=50)
    def test_loaded_config_matches_file(self, config_data):
        temp_config_path = write_config(config_data)
        try:
            config = ConfigManager(temp_config_path).load_config()

            assert config.database.db_type == config_data["database"]["db_type"]
            assert config.database.host == config_data["database"]["host"]
            assert config.database.port == config_data["database"]["port"]
            assert config.browser.headless == config_data["browser"]["headless"]
            assert config.browser.submission_delay_ms == config_data["browser"]["submission_delay_ms"]
            assert config.worker_pool.max_concurrent == config_data["worker_pool"]["max_concurrent"]
            assert config.worker_pool.retry_attempts == config_data["worker_pool"]["retry_attempts"]
            assert config.sessions.max_retained_sessions == config_data["sessions"]["max_retained_sessions"]
            assert config.log_level == config_data["log_level"]
            assert config.log_file == config_data["log_file"]
            # Sections absent from the file keep their defaults
            assert config.providers == SystemConfig().providers
        finally:
            os.unlink(temp_config_path)

    @given(config_data=system_config_strategy())
    @settings(max_examples=30)
    def test_configuration_reload_consistency(self, config_data):
        """Changing the file on disk is picked up without a restart."""
        temp_config_path = write_config(config_data)
        try:
            config_manager = ConfigManager(temp_config_path)
            initial_config = config_manager.load_config()

            assert config_manager.reload_if_changed() is False

            modified = dict(config_data)
            modified["log_level"] = "ERROR" if config_data["log_level"] != "ERROR" else "DEBUG"
            modified["worker_pool"] = dict(config_data["worker_pool"], max_concurrent=3)
            rewrite_config(temp_config_path, modified)

            assert config_manager.reload_if_changed() is True
            updated_config = config_manager.load_config()

            assert updated_config.log_level == modified["log_level"]
            assert updated_config.worker_pool.max_concurrent == 3
            assert updated_config.database.host == initial_config.database.host
            assert updated_config.database.port == initial_config.database.port
        finally:
            os.unlink(temp_config_path)

    @given(config_data=system_config_strategy())
    @settings(max_examples=10)
    def test_configuration_consistency_across_reloads(self, config_data):
        temp_config_path = write_config(config_data)
        try:
            config_manager = ConfigManager(temp_config_path)
            configs = [config_manager.load_config() for _ in range(5)]

            first_config = configs[0]
            for config in configs[1:]:
                assert config is first_config
        finally:
            os.unlink(temp_config_path)

    @given(config_data=system_config_strategy())
    @settings(max_examples=20)
    def test_export_round_trip_passes_schema(self, config_data):
        temp_config_path = write_config(config_data)
        saved_path = temp_config_path + ".saved"
        try:
            config_manager = ConfigManager(temp_config_path)
            config_manager.load_config()
            config_manager.save_config(saved_path)

            reloaded_manager = ConfigManager(saved_path)
            reloaded = reloaded_manager.load_config()
            assert reloaded_manager.export_config() == config_manager.export_config()
            assert reloaded.worker_pool == config_manager.load_config().worker_pool
        finally:
            os.unlink(temp_config_path)
            if os.path.exists(saved_path):
                os.unlink(saved_path)


class TestConfigurationValidation:

    def setup_method(self):
        self.env = clean_env()
        self.paths = []

    def teardown_method(self):
        self.env.stop()
        for path in self.paths:
            if os.path.exists(path):
                os.unlink(path)

    def load(self, data):
        path = write_config(data)
        self.paths.append(path)
        return ConfigManager(path).load_config()

    @pytest.mark.parametrize("data", [
        {"database": {"db_type": "oracle"}},
        {"database": {"sqlite_path": "x.db"}},
        {"worker_pool": {"max_concurrent": 0}},
        {"worker_pool": {"retry_attempts": -1}},
        {"browser": {"navigation_timeout_ms": 10}},
        {"sessions": {"flush_interval": 0}},
        {"log_level": "VERBOSE"},
        {"unknown_section": {}},
    ])
    def test_schema_violations_raise(self, data):
        with pytest.raises(ConfigurationError):
            self.load(data)

    def test_invalid_json_raises(self):
        path = write_config({"log_level": "INFO"})
        self.paths.append(path)
        config_manager = ConfigManager(path)
        assert config_manager.load_config().log_level == "INFO"

        with open(path, 'w') as f:
            f.write('{"invalid": json}')
        os.utime(path, (os.stat(path).st_mtime + 5,) * 2)

        with pytest.raises(ConfigurationError):
            config_manager.load_config()

    def test_missing_file_uses_defaults(self):
        config = ConfigManager("/nonexistent/tender_monitor_config.json").load_config()
        assert config == SystemConfig()

    def test_save_without_config_raises(self):
        with pytest.raises(ConfigurationError):
            ConfigManager("/nonexistent/config.json").save_config()

    def test_schema_covers_every_section(self):
        assert set(CONFIG_SCHEMA["properties"]) == {
            "database", "browser", "worker_pool", "sessions", "providers", "log_level", "log_file"
        }


class TestEnvironmentOverrides:

    def setup_method(self):
        self.env = clean_env()
        self.paths = []

    def teardown_method(self):
        self.env.stop()
        for path in self.paths:
            os.unlink(path)

    def test_env_overrides_file_secrets(self):
        path = write_config({"database": {"db_type": "sqlite", "sqlite_path": "file.db", "password": "x"}})
        self.paths.append(path)
        os.environ["DB_PASSWORD"] = "from-env"
        os.environ["SQLITE_PATH"] = "env.db"

        config = ConfigManager(path).load_config()

        assert config.database.password == "from-env"
        assert config.database.sqlite_path == "env.db"

    def test_env_only_configuration(self):
        os.environ.update({
            "DB_TYPE": "postgresql",
            "DB_PORT": "6543",
            "DB_NAME": "tenders",
            "BROWSER_HEADLESS": "false",
            "MAX_CONCURRENT": "7",
            "LOG_LEVEL": "debug",
        })

        config = ConfigManager("/nonexistent/config.json").load_config()

        assert config.database.db_type == "postgresql"
        assert config.database.port == 6543
        assert config.database.database == "tenders"
        assert config.browser.headless is False
        assert config.worker_pool.max_concurrent == 7
        assert config.log_level == "DEBUG"

    def test_invalid_env_pool_size_raises(self):
        os.environ["MAX_CONCURRENT"] = "0"
        with pytest.raises(ConfigurationError):
            ConfigManager("/nonexistent/config.json").load_config()
