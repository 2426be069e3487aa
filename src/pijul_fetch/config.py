"""Runtime configuration with PIJUL_FETCH_* environment overrides."""
from pathlib import Path
from typing import Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from pijul_fetch.inputs.schema import CURRENT_SCHEMA_VERSION

DEFAULT_HOME = Path.home() / ".cache" / "pijul-fetch"


class FetchSettings(BaseSettings):
    """Settings for the resolver, cache and store.

    Examples:
        export PIJUL_FETCH_CACHE_PATH=/var/cache/pijul-fetch/fetcher.sqlite
        export PIJUL_FETCH_IMPURE_TTL=0
        export PIJUL_FETCH_PROBE_POLICY=lenient
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="PIJUL_FETCH_",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    cache_path: Path = Field(default=DEFAULT_HOME / "fetcher.sqlite")
    store_path: Path = Field(default=DEFAULT_HOME / "store")
    pijul_program: str = "pijul"
    pijul_timeout: Optional[float] = None

    # Seconds an impure (unlocked) cache entry is reused; None never expires
    impure_ttl: Optional[int] = Field(default=3600, ge=0)
    probe_policy: Literal["strict", "lenient"] = "strict"
    schema_version: int = CURRENT_SCHEMA_VERSION

    log_level: str = "INFO"
