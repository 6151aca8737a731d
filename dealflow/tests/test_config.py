from __future__ import annotations

from pathlib import Path

import pytest

from dealflow.config import DEFAULT_RED_FLAG_TRIGGERS, Settings, get_settings


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in ("DEALFLOW_HOME", "DEALFLOW_DB_PATH", "DEALFLOW_RED_FLAG_TRIGGERS",
                 "DEALFLOW_HISTORY_MAX_DAYS", "DEALFLOW_EVENTS_PAGE_LIMIT"):
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


class TestSettings:
    def test_defaults(self):
        s = Settings()
        assert s.red_flag_triggers == frozenset(DEFAULT_RED_FLAG_TRIGGERS)
        assert s.history_max_days == 365
        assert s.events_page_limit == 50
        assert s.database_path.name == "dealflow.db"

    def test_home_override(self, monkeypatch, tmp_path):
        monkeypatch.setenv("DEALFLOW_HOME", str(tmp_path))
        s = Settings()
        assert s.home == tmp_path.resolve()
        assert s.database_path == tmp_path.resolve() / "data" / "dealflow.db"

    def test_db_path_override(self, monkeypatch, tmp_path):
        monkeypatch.setenv("DEALFLOW_DB_PATH", str(tmp_path / "x.db"))
        s = Settings()
        assert s.database_path == (tmp_path / "x.db").resolve()
        assert s.database_url == f"sqlite:///{(tmp_path / 'x.db').resolve()}"

    def test_red_flag_triggers_from_env(self, monkeypatch):
        monkeypatch.setenv("DEALFLOW_RED_FLAG_TRIGGERS", " Legal_Issue, customer_churn ,, ")
        assert Settings().red_flag_triggers == frozenset({"legal_issue", "customer_churn"})

    def test_red_flag_triggers_can_be_disabled(self, monkeypatch):
        monkeypatch.setenv("DEALFLOW_RED_FLAG_TRIGGERS", "")
        assert Settings().red_flag_triggers == frozenset()

    def test_int_override(self, monkeypatch):
        monkeypatch.setenv("DEALFLOW_HISTORY_MAX_DAYS", "90")
        assert Settings().history_max_days == 90

    def test_bad_int(self, monkeypatch):
        monkeypatch.setenv("DEALFLOW_EVENTS_PAGE_LIMIT", "lots")
        with pytest.raises(ValueError, match="DEALFLOW_EVENTS_PAGE_LIMIT"):
            Settings()

    def test_ensure_directories(self, tmp_path):
        s = Settings(database_path=tmp_path / "nested" / "db" / "d.db")
        s.ensure_directories()
        assert (tmp_path / "nested" / "db").is_dir()

    def test_get_settings_cached(self):
        assert get_settings() is get_settings()
        assert isinstance(get_settings().home, Path)
