from __future__ import annotations

import logging

from intakeportal.core.config import Settings
from intakeportal.core.errors import ConfigurationError
from intakeportal.persistence.base import IntakeStore
from intakeportal.persistence.db import build_engine
from intakeportal.persistence.memory import MemoryStore
from intakeportal.persistence.rest import RestStore
from intakeportal.persistence.sql import SqlStore


logger = logging.getLogger(__name__)

SUPPORTED_DRIVERS = ("memory", "sql", "rest")


def build_store(settings: Settings) -> IntakeStore:
    # Select the backing store once at startup; every backend honours the same contract.
    driver = settings.persistence_driver.strip().lower()
    if driver == "memory":
        if settings.is_production:
            logger.warning("persistence_driver_memory_in_production state_is_not_durable=true")
        return MemoryStore()
    if driver == "sql":
        # Local sqlite databases are created on demand; server databases are migrated by alembic.
        return SqlStore(
            build_engine(settings),
            create_schema=settings.database_url.startswith("sqlite"),
        )
    if driver == "rest":
        if not settings.rest_base_url or not settings.rest_api_key:
            raise ConfigurationError("rest persistence requires rest_base_url and rest_api_key")
        return RestStore.from_settings(
            base_url=settings.rest_base_url,
            api_key=settings.rest_api_key,
            timeout_ms=settings.rest_timeout_ms,
        )
    raise ConfigurationError(
        f"Unknown persistence_driver {settings.persistence_driver!r}; expected one of {', '.join(SUPPORTED_DRIVERS)}"
    )
