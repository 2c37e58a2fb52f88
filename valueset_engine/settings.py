"""
Runtime settings for the value-set engine.

Loaded from environment variables prefixed with ``VALUESET_``, e.g.
``VALUESET_DB_PATH=/var/lib/datasheets/valuesets.db``.
"""

import logging

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="VALUESET_")

    db_path: str = ":memory:"
    prefill_from_requirement: bool = True
    bump_rejected_on_mutation: bool = True
    log_level: str = Field(default="INFO")
    configure_logging: bool = False


def configure_logging(settings: Settings) -> None:
    """Apply the configured log level to the root logger."""
    level = getattr(logging, settings.log_level.upper(), None)
    if not isinstance(level, int):
        raise ValueError(f"VALUESET_LOG_LEVEL is not a valid level: {settings.log_level!r}")
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
