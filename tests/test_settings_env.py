from newsacquire.config import Settings, get_settings, reset_settings


def test_defaults_without_environment():
    settings = Settings.from_env()
    assert settings.max_retries == 5
    assert settings.batch_size == 3
    assert settings.job_budget_ms == 300000
    assert settings.snippet_allowlist == ()
    assert settings.database_url is None


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("NEWSACQUIRE_MAX_RETRIES", "2")
    monkeypatch.setenv("NEWSACQUIRE_SNIPPET_ALLOWLIST", " BBC.co.uk, ,example.com ")
    monkeypatch.setenv("NEWSACQUIRE_DATABASE_URL", "sqlite:///:memory:")

    settings = Settings.from_env()

    assert settings.max_retries == 2
    assert settings.snippet_allowlist == ("bbc.co.uk", "example.com")
    assert settings.database_url == "sqlite:///:memory:"


def test_invalid_and_zero_values_fall_back(monkeypatch):
    monkeypatch.setenv("NEWSACQUIRE_TIMEOUT_MS", "soon")
    monkeypatch.setenv("NEWSACQUIRE_BATCH_SIZE", "0")

    settings = Settings.from_env()

    assert settings.timeout_ms == 30000
    assert settings.batch_size == 1


def test_get_settings_is_cached_until_reset(monkeypatch):
    first = get_settings()
    monkeypatch.setenv("NEWSACQUIRE_MAX_AGE_DAYS", "3")
    assert get_settings() is first

    reset_settings()
    assert get_settings().max_age_days == 3
