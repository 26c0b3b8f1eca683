"""sonos-scout - SSDP discovery and a live, decaying registry of Sonos players.

Finds ZonePlayers with multicast M-SEARCH bursts, listens for NOTIFY
announcements, fetches and parses their device descriptions, and keeps an
in-memory roster that expires and re-queries stale entries.
"""

__version__ = "0.3.0"

from .config import Config

__all__ = ["Config", "__version__"]
