from jewelry_store.config import DEFAULT_OVERHEAD_PCT, load_settings


def test_settings_from_environment(monkeypatch):
    monkeypatch.setenv("STORE_API_BASE_URL", "http://shop.local/")
    monkeypatch.setenv("STORE_OVERHEAD_PCT", "0.3")
    monkeypatch.setenv("STORE_FETCH_RETRIES", "5")
    monkeypatch.setenv("LOG_LEVEL", "debug")

    settings = load_settings()
    assert settings.api_base_url == "http://shop.local"
    assert settings.overhead_pct == 0.3
    assert settings.fetch_retries == 5
    assert settings.log_level == "DEBUG"


def test_invalid_number_falls_back_to_default(monkeypatch):
    monkeypatch.setenv("STORE_OVERHEAD_PCT", "a lot")
    assert load_settings().overhead_pct == DEFAULT_OVERHEAD_PCT
