from __future__ import annotations

import pytest

from economist.config import DEFAULT_CHART_SERVER_URL, _int, _int_list, load_settings


@pytest.fixture
def env(monkeypatch):
    for name in ("GUILD_ID", "DATABASE_PASSWORD", "STAFF_ROLE_IDS", "CHART_SERVER_URL", "LOG_LEVEL", "HTTP_TIMEOUT"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("DISCORD_TOKEN", "token")
    monkeypatch.setenv("DATABASE_URL", "postgres://localhost/economist")
    return monkeypatch


def test_defaults(env):
    settings = load_settings()
    assert settings.guild_id is None
    assert settings.database_password == ""
    assert settings.staff_role_ids == frozenset()
    assert settings.chart_server_url == DEFAULT_CHART_SERVER_URL
    assert settings.log_level == "INFO"


def test_overrides(env):
    env.setenv("GUILD_ID", " 1234 ")
    env.setenv("STAFF_ROLE_IDS", "11, 22;22\n33")
    env.setenv("CHART_SERVER_URL", "https://charts.example/")
    env.setenv("LOG_LEVEL", "debug")
    env.setenv("HTTP_TIMEOUT", "not-a-number")

    settings = load_settings()

    assert settings.guild_id == 1234
    assert settings.staff_role_ids == frozenset({11, 22, 33})
    assert settings.chart_server_url == "https://charts.example"
    assert settings.log_level == "DEBUG"
    assert settings.http_timeout == 30.0


@pytest.mark.parametrize("missing", ["DISCORD_TOKEN", "DATABASE_URL"])
def test_missing_required_value(env, missing):
    env.delenv(missing)
    with pytest.raises(RuntimeError, match=missing):
        load_settings()


def test_int_helpers(monkeypatch):
    monkeypatch.setenv("X_IDS", "<@&42>, 7, 42")
    monkeypatch.setenv("X_NUM", "abc")
    assert _int_list("X_IDS") == [7, 42]
    assert _int("X_NUM", 5) == 5
