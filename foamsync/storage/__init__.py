"""Client-side persistence and transport."""

from .cloud import ApiResponse, CloudClient, TransportClient
from .local_cache import LocalCache

__all__ = ["ApiResponse", "CloudClient", "TransportClient", "LocalCache"]
