from __future__ import annotations

from visual_dataset.config import Settings, load_settings


def test_env_overrides(monkeypatch):
    monkeypatch.setenv("SUPABASE_URL", "https://abcd1234.supabase.co/")
    monkeypatch.setenv("SUPABASE_SERVICE_KEY", "sb_secret_x")
    monkeypatch.setenv("SUPABASE_KEY", "anon")
    monkeypatch.setenv("COVERAGE_TARGET", "250")
    monkeypatch.setenv("MAX_IMAGE_MB", "2")
    monkeypatch.setenv("LOG_LEVEL", "debug")

    s = load_settings()

    assert s.supabase_url == "https://abcd1234.supabase.co"
    assert s.supabase_url_valid()
    assert s.supabase_key == "sb_secret_x"
    assert s.coverage_target == 250
    assert s.max_image_bytes == 2 * 1024 * 1024
    assert s.log_level == "DEBUG"


def test_bad_number_falls_back(monkeypatch):
    monkeypatch.setenv("COVERAGE_TARGET", "lots")
    monkeypatch.setenv("WIZARD_RESET_DELAY_SECONDS", "soon")

    s = load_settings()

    assert s.coverage_target == 1000
    assert s.reset_delay_seconds == 3.0


def test_postgres_dsn_is_not_a_project_url():
    s = Settings(
        app_env="dev",
        supabase_url="postgresql://user@db.abcd.supabase.co:5432/postgres",
        supabase_key="",
        storage_bucket="submission-images",
        reviewer_identity="admin",
        coverage_target=1000,
        reset_delay_seconds=3.0,
        max_image_bytes=10,
        log_level="INFO",
        orphan_grace_seconds=3600.0,
    )
    assert not s.supabase_url_valid()
    assert not s.supabase_key_present()
