"""Selects the billing store implementation once, at startup."""
from __future__ import annotations

import logging
from typing import Callable

from sqlalchemy.ext.asyncio import AsyncSession

from gtm_map.core.config import Settings
from gtm_map.store.base import BillingStore
from gtm_map.store.memory import MemoryBillingStore
from gtm_map.store.sql import SqlBillingStore


logger = logging.getLogger(__name__)

StoreFactory = Callable[[AsyncSession], BillingStore]


def build_store_factory(config: Settings) -> StoreFactory:
    """Return a callable that yields the configured store for a request."""

    backend_type = config.store.backend_type
    if backend_type == "memory":
        store = MemoryBillingStore()
        logger.info("Using in-memory billing store")
        return lambda _session: store
    if backend_type == "sql":
        logger.info("Using SQL billing store")
        return SqlBillingStore
    raise ValueError(f"Unsupported store backend: {backend_type}")
