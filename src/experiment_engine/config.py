"""Engine settings, read from the environment (prefix EXPERIMENT_ENGINE_) or a .env file."""

import logging
from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class EngineSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="EXPERIMENT_ENGINE_",
        env_file=".env",
        extra="ignore",
    )

    log_level: str = "INFO"

    # Analysis defaults
    default_significance_level: float = Field(0.05, gt=0, lt=1)
    default_power: float = Field(0.8, gt=0, lt=1)
    bayesian_simulations: int = Field(10000, ge=10000)
    random_seed: Optional[int] = None
    srm_alpha: float = Field(0.01, gt=0, lt=1)

    # Guardrail evaluation
    guardrail_workers: int = Field(4, ge=1)

    # Storage
    store_backend: Literal["memory", "csv"] = "memory"
    data_dir: str = "data/experiments"

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, v):
        return str(v).upper()


@lru_cache()
def get_settings() -> EngineSettings:
    return EngineSettings()


def configure_logging(settings: Optional[EngineSettings] = None) -> None:
    settings = settings or get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
