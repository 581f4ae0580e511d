import json

from inbox_mirror.config import AppConfig, load_config


def test_defaults():
    config = AppConfig()

    assert config.port == 4040
    assert config.api_key == ""
    assert config.sync.interval_minutes == 15
    assert config.sync.page_size == 100
    assert config.sync.max_conversations == 1100
    assert config.sync.message_window == 50
    assert config.remote.token_refresh_margin_seconds == 3600


def test_environment_overrides(monkeypatch, tmp_path):
    monkeypatch.setenv("CACHE_DIR", str(tmp_path))
    monkeypatch.setenv("PORT", "8080")
    monkeypatch.setenv("WEBHOOK_API_KEY", "key")
    monkeypatch.setenv("AVITO_USER_ID", "42")
    monkeypatch.setenv("SYNC_INTERVAL_MINUTES", "5")

    config = load_config()

    assert config.cache_dir == str(tmp_path)
    assert config.port == 8080
    assert config.api_key == "key"
    assert config.remote.user_id == "42"
    assert config.sync.interval_minutes == 5


def test_config_file_with_env_precedence(monkeypatch, tmp_path):
    (tmp_path / "config.json").write_text(
        json.dumps({"port": 9000, "remote": {"client_id": "from-file", "user_id": "7"}}),
        encoding="utf-8",
    )
    monkeypatch.setenv("CACHE_DIR", str(tmp_path))
    monkeypatch.delenv("PORT", raising=False)
    monkeypatch.delenv("AVITO_CLIENT_ID", raising=False)
    monkeypatch.setenv("AVITO_USER_ID", "8")

    config = load_config()

    assert config.port == 9000
    assert config.remote.client_id == "from-file"
    assert config.remote.user_id == "8"


def test_broken_config_file_falls_back_to_defaults(monkeypatch, tmp_path):
    (tmp_path / "config.json").write_text("{broken", encoding="utf-8")
    monkeypatch.setenv("CACHE_DIR", str(tmp_path))
    monkeypatch.delenv("PORT", raising=False)

    assert load_config().port == 4040
