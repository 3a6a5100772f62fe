"""Settings for the openshelf persistence core.

Sources, strongest first: constructor arguments, ``OPENSHELF__*`` environment
variables (``OPENSHELF__CACHE__TTL_HOURS=24``), then an ``openshelf.yaml``
file from the working directory or the platform config dir. Every field has a
default, so no file is needed to run.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

import platformdirs
from pydantic import BaseModel
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)

APP_NAME = "openshelf"
CONFIG_FILENAME = f"{APP_NAME}.yaml"

_DEFAULT_DATA_DIR = platformdirs.user_data_dir(APP_NAME)
_DEFAULT_DB_PATH = str(Path(_DEFAULT_DATA_DIR) / f"{APP_NAME}.db")


def _find_config_file() -> str | None:
    for directory in (Path.cwd(), Path(platformdirs.user_config_dir(APP_NAME))):
        candidate = directory / CONFIG_FILENAME
        if candidate.is_file():
            return str(candidate)
    return None


class ApiSettings(BaseModel):
    """Upstream OpenAlex endpoint and request defaults."""

    base_url: str = "https://api.openalex.org"
    user_agent: str = f"{APP_NAME}/1.0"
    per_page: int = 100


class CacheSettings(BaseModel):
    ttl_hours: int = 24 * 7  # one week


class FetcherSettings(BaseModel):
    """429 handling. ``max_rate_limit_retries`` counts retries after the first try."""

    max_rate_limit_retries: int = 3
    default_retry_after_ms: int = 1000


class StorageSettings(BaseModel):
    db_path: str = _DEFAULT_DB_PATH  # ":memory:" keeps everything in-process


class LoggingSettings(BaseModel):
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    format: Literal["json", "text"] = "text"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="OPENSHELF__",
        env_nested_delimiter="__",
        yaml_file=_find_config_file(),
        yaml_file_encoding="utf-8",
    )

    api: ApiSettings = ApiSettings()
    cache: CacheSettings = CacheSettings()
    fetcher: FetcherSettings = FetcherSettings()
    storage: StorageSettings = StorageSettings()
    logging: LoggingSettings = LoggingSettings()

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
        **kwargs: Any,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # No .env or secrets-dir sources
        return init_settings, env_settings, YamlConfigSettingsSource(settings_cls)
