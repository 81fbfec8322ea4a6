"""Push sink service module."""

from hapi_indexer.services.push.client import DeliveryError, PushClient

__all__ = ["DeliveryError", "PushClient"]
