"""
test_config.py — Settings.from_env() parsing.

An explicit ``environ`` mapping is passed in every test, so neither the
process environment nor a stray ``.env`` file can influence the result.
"""

from estima.config import (
    DEFAULT_DB_URL,
    DEFAULT_SAVE_DEBOUNCE_MS,
    DEFAULT_SAVE_TIMEOUT_S,
    SCHEMA_VERSION,
    Settings,
)


class TestDefaults:

    def test_empty_environment(self):
        settings = Settings.from_env({})
        assert settings.db_url == DEFAULT_DB_URL
        assert settings.schema_version == SCHEMA_VERSION
        assert settings.save_debounce_ms == DEFAULT_SAVE_DEBOUNCE_MS
        assert settings.save_timeout_s == DEFAULT_SAVE_TIMEOUT_S
        assert settings.projects_table == "projects"
        assert settings.log_level == "INFO"
        assert settings.log_json is True
        assert settings.remote_enabled is False

    def test_debounce_in_seconds(self):
        assert Settings(save_debounce_ms=250).save_debounce_s == 0.25


class TestOverrides:

    def test_values_are_read_and_trimmed(self):
        settings = Settings.from_env({
            "ESTIMA_DB_URL": " sqlite+aiosqlite:////tmp/e.sqlite3 ",
            "ESTIMA_SCHEMA_VERSION": "3",
            "SUPABASE_URL": "https://abc.supabase.co",
            "SUPABASE_ANON_KEY": "anon",
            "SUPABASE_PROJECTS_TABLE": "estimates",
            "REMOTE_TIMEOUT_S": "4.5",
            "SAVE_DEBOUNCE_MS": "800",
            "SAVE_TIMEOUT_S": "20",
            "LOG_LEVEL": "debug",
            "LOG_FORMAT": "text",
        })
        assert settings.db_url == "sqlite+aiosqlite:////tmp/e.sqlite3"
        assert settings.schema_version == 3
        assert settings.remote_enabled is True
        assert settings.projects_table == "estimates"
        assert settings.remote_timeout_s == 4.5
        assert settings.save_debounce_ms == 800
        assert settings.save_timeout_s == 20.0
        assert settings.log_level == "DEBUG"
        assert settings.log_json is False

    def test_url_without_key_keeps_remote_disabled(self):
        settings = Settings.from_env({"SUPABASE_URL": "https://abc.supabase.co", "SUPABASE_ANON_KEY": "  "})
        assert settings.supabase_anon_key is None
        assert settings.remote_enabled is False


class TestInvalidValues:

    def test_unparseable_numbers_fall_back(self):
        settings = Settings.from_env({"SAVE_DEBOUNCE_MS": "soon", "SAVE_TIMEOUT_S": "forever"})
        assert settings.save_debounce_ms == DEFAULT_SAVE_DEBOUNCE_MS
        assert settings.save_timeout_s == DEFAULT_SAVE_TIMEOUT_S

    def test_negative_numbers_fall_back(self):
        settings = Settings.from_env({"SAVE_DEBOUNCE_MS": "-5"})
        assert settings.save_debounce_ms == DEFAULT_SAVE_DEBOUNCE_MS
