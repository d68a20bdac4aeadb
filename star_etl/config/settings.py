"""
Retail Star Schema ETL Configuration

Configuration is loaded with Pydantic settings from environment variables
(and an optional .env file). Components receive a Settings instance through
their constructors; get_settings() is only the fallback for entry points.
"""

from functools import lru_cache
from typing import List, Optional

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class SourceDatabaseSettings(BaseSettings):
    """Relational OLTP source configuration"""

    model_config = SettingsConfigDict(env_prefix="SOURCE_DB_")

    driver: str = Field(default="postgresql+asyncpg", description="SQLAlchemy async driver")
    host: str = Field(default="localhost", description="Database host")
    port: int = Field(default=5432, description="Database port")
    name: str = Field(default="classicmodels", description="Database name")
    user: str = Field(default="etl_reader", description="Database user")
    password: SecretStr = Field(default="change-me", description="Database password")
    url: Optional[str] = Field(default=None, description="Full database URL (overrides host/port)")
    query_timeout_seconds: float = Field(default=60.0, gt=0, description="Per-entity extraction timeout")
    connect_timeout_seconds: float = Field(default=10.0, gt=0, description="Connection timeout")
    echo: bool = Field(default=False, description="Echo SQL queries")

    @property
    def async_url(self) -> str:
        """Async database URL - uses url if set, otherwise builds from host/port"""
        if self.url:
            return self.url
        return (
            f"{self.driver}://{self.user}:{self.password.get_secret_value()}"
            f"@{self.host}:{self.port}/{self.name}"
        )


class DataLakeSettings(BaseSettings):
    """Columnar sink configuration"""

    model_config = SettingsConfigDict(env_prefix="DATA_")

    output_path: str = Field(default="./data/curated/star_schema", description="Published star schema root")
    compression: str = Field(default="snappy", description="Parquet compression codec")
    fact_partition_by: List[str] = Field(default=["order_year"], description="Fact table partition columns")
    retain_snapshots: int = Field(default=2, ge=1, description="Published snapshots kept per table")


class PipelineSettings(BaseSettings):
    """Run-level behaviour of the orchestrator"""

    model_config = SettingsConfigDict(env_prefix="PIPELINE_")

    extract_max_attempts: int = Field(default=3, ge=1, description="Extraction attempts before failing the run")
    retry_backoff_seconds: float = Field(default=2.0, ge=0, description="Initial retry backoff")
    retry_backoff_max_seconds: float = Field(default=30.0, ge=0, description="Maximum retry backoff")
    lock_stale_seconds: float = Field(default=6 * 3600, gt=0, description="Age after which a run lock is broken")
    strict_locations: bool = Field(
        default=False,
        description="Fail the run when customers disagree on a postal code's city/state/country",
    )


class MonitoringSettings(BaseSettings):
    """Logging and metrics configuration"""

    model_config = SettingsConfigDict(env_prefix="")

    log_level: str = Field(default="INFO", alias="LOG_LEVEL", description="Logging level")
    log_format: str = Field(default="json", description="Log format: json or text")
    metrics_textfile: Optional[str] = Field(
        default=None,
        alias="MONITORING_METRICS_TEXTFILE",
        description="Write Prometheus metrics to this file after each CLI run",
    )


class Settings(BaseSettings):
    """
    Root settings of the ETL

    One section per concern: source database, published data lake, run
    behaviour and monitoring.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    app_name: str = Field(default="retail-star-etl", alias="APP_NAME", description="Application name")
    app_env: str = Field(default="development", alias="APP_ENV", description="Environment")
    version: str = Field(default="1.0.0", description="Application version")

    source: SourceDatabaseSettings = Field(default_factory=SourceDatabaseSettings)
    data_lake: DataLakeSettings = Field(default_factory=DataLakeSettings)
    pipeline: PipelineSettings = Field(default_factory=PipelineSettings)
    monitoring: MonitoringSettings = Field(default_factory=MonitoringSettings)

    @field_validator("app_env")
    @classmethod
    def validate_env(cls, v: str) -> str:
        """Validate environment value"""
        allowed = ["development", "staging", "production", "testing"]
        if v.lower() not in allowed:
            raise ValueError(f"Environment must be one of: {allowed}")
        return v.lower()


@lru_cache()
def get_settings() -> Settings:
    """Settings from the environment, loaded once per process"""
    return Settings()
