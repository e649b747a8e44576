"""
Configuration settings for the load simulator.

Uses Pydantic Settings to load environment variables (and `.env`) for both store
connections, logging, and the workload shape. A JSON file (`config/appsettings.json`
by default, or whatever `LOADSIM_CONFIG_FILE` points at) may supply the same keys;
environment variables win over the file.
"""
from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Tuple, Type

from pydantic import Field, PositiveInt, field_validator
from pydantic_settings import (
    BaseSettings,
    JsonConfigSettingsSource,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

from loadsim.utils.logging import get_logger

log = get_logger(__name__)

DEFAULT_CONFIG_FILE = "config/appsettings.json"


def config_file_path() -> Path:
    return Path(os.environ.get("LOADSIM_CONFIG_FILE", DEFAULT_CONFIG_FILE))


class Settings(BaseSettings):
    # Relational store (Postgres)
    db_host: str = "localhost"
    db_port: int = 5432
    db_user: str = "postgres"
    db_password: str = "postgres"
    db_name: str = "iot_load"
    db_statement_timeout_ms: int = 300_000
    sql_max_concurrent_writes: PositiveInt = 5
    sql_pool_max_size: PositiveInt = 10
    sql_pool_timeout_seconds: float = 30.0

    # Document store (MongoDB)
    mongo_uri: str = "mongodb://localhost:27017"
    mongo_database: str = "iot_load"
    mongo_max_concurrent_writes: PositiveInt = 50
    mongo_write_pause_ms: int = 50
    mongo_pool_max_size: PositiveInt = 100
    mongo_pool_min_size: int = 5
    mongo_timeout_ms: PositiveInt = 5_000
    mongo_wait_queue_timeout_ms: PositiveInt = 10_000

    # Workload
    machine_count: int = Field(10, ge=0)
    plant_id: str = "Plant-01"
    company_id: str = "Ace"
    cycle_duration_seconds: PositiveInt = 10
    transaction_tables: List[str] = Field(
        default_factory=lambda: [
            "Focas_LiveData",
            "Focas_PredictiveMaintenance",
            "MachineStatusHistory",
            "RawData",
            "tcs_energyconsumption",
        ]
    )
    collections_to_sync: List[str] = Field(default_factory=list)
    mongo_collection_frequencies: Dict[str, int] = Field(default_factory=dict)
    template_dir: Path = Path("data/templates")

    # Application
    app_env: str = "development"
    log_level: str = "INFO"
    json_logs: bool = False

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @field_validator("mongo_collection_frequencies", mode="before")
    @classmethod
    def _drop_malformed_frequencies(cls, value: Any) -> Dict[str, int]:
        """
        Keep only entries whose interval is a positive whole number of seconds.

        A bad entry means that key is never scheduled; it does not fail startup.
        """
        if value is None:
            return {}
        if not isinstance(value, dict):
            log.warning("Ignoring non-mapping collection frequencies", extra={"value": repr(value)})
            return {}

        frequencies: Dict[str, int] = {}
        for key, raw in value.items():
            seconds = _positive_seconds(raw)
            if seconds is None:
                log.warning(
                    "Ignoring malformed collection frequency",
                    extra={"key": key, "value": repr(raw)},
                )
                continue
            frequencies[str(key)] = seconds
        return frequencies

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: Type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> Tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            JsonConfigSettingsSource(settings_cls, json_file=config_file_path()),
            file_secret_settings,
        )

    @property
    def dsn(self) -> str:
        return (
            f"postgresql://{self.db_user}:{self.db_password}"
            f"@{self.db_host}:{self.db_port}/{self.db_name}"
        )


def _positive_seconds(raw: Any) -> int | None:
    if isinstance(raw, bool):
        return None
    if isinstance(raw, int):
        return raw if raw >= 1 else None
    if isinstance(raw, float) and raw.is_integer():
        return int(raw) if raw >= 1 else None
    if isinstance(raw, str) and raw.strip().isdigit():
        seconds = int(raw.strip())
        return seconds if seconds >= 1 else None
    return None


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Retrieve a cached instance of Settings to avoid repeated env parsing.
    """
    return Settings()


__all__ = ["Settings", "get_settings", "config_file_path"]
