"""Storefront event entry points."""

from events.store_events import StoreEventHandlers

__all__ = ["StoreEventHandlers"]
