"""Storage strategies for subscription, usage and webhook state."""

from gtm_map.store.base import BillingStore
from gtm_map.store.factory import StoreFactory, build_store_factory

__all__ = ["BillingStore", "StoreFactory", "build_store_factory"]
