"""
Unit Tests - Configuration and Logging
"""
import pytest
import structlog
from pydantic import ValidationError

from star_etl.config import Settings
from star_etl.config.logging import run_context
from star_etl.config.settings import SourceDatabaseSettings


class TestSettings:
    """Tests for Settings"""

    def test_sections_read_prefixed_environment(self, monkeypatch):
        monkeypatch.setenv("DATA_OUTPUT_PATH", "/lake/star")
        monkeypatch.setenv("PIPELINE_EXTRACT_MAX_ATTEMPTS", "5")
        monkeypatch.setenv("PIPELINE_STRICT_LOCATIONS", "true")
        monkeypatch.setenv("SOURCE_DB_QUERY_TIMEOUT_SECONDS", "12.5")

        settings = Settings()

        assert settings.data_lake.output_path == "/lake/star"
        assert settings.pipeline.extract_max_attempts == 5
        assert settings.pipeline.strict_locations is True
        assert settings.source.query_timeout_seconds == 12.5

    def test_source_url_built_from_parts(self, monkeypatch):
        monkeypatch.delenv("SOURCE_DB_URL", raising=False)
        monkeypatch.setenv("SOURCE_DB_HOST", "oltp.internal")
        monkeypatch.setenv("SOURCE_DB_PASSWORD", "s3cret")

        source = SourceDatabaseSettings()

        assert source.async_url.startswith("postgresql+asyncpg://")
        assert "@oltp.internal:5432/classicmodels" in source.async_url
        assert "s3cret" not in repr(source)

    def test_explicit_url_wins(self, monkeypatch):
        monkeypatch.setenv("SOURCE_DB_URL", "sqlite+aiosqlite:///tmp/source.db")

        assert SourceDatabaseSettings().async_url == "sqlite+aiosqlite:///tmp/source.db"

    def test_invalid_environment(self, monkeypatch):
        monkeypatch.setenv("APP_ENV", "qa")

        with pytest.raises(ValidationError):
            Settings()

    def test_retain_snapshots_minimum(self, monkeypatch):
        monkeypatch.setenv("DATA_RETAIN_SNAPSHOTS", "0")

        with pytest.raises(ValidationError):
            Settings()


def test_run_context_binds_run_id():
    with run_context("run-42"):
        assert structlog.contextvars.get_contextvars()["run_id"] == "run-42"

    assert "run_id" not in structlog.contextvars.get_contextvars()
