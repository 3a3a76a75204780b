# =============================================================================
# StreamSentry - Media Server Account Sharing Monitor
# =============================================================================
"""
StreamSentry: account-sharing and anomaly detection for Plex, Jellyfin and Emby.

This package evaluates playback sessions against configured rules and flags
suspicious access: impossible travel, simultaneous distant locations, too
many addresses, too many concurrent streams and disallowed countries.

Modules:
    - config: Configuration management and rule file loading
    - engine: Rule violation detection engine
    - processor: Redis session store and Kafka monitor service
"""

__version__ = "1.0.0"

from typing import Final

# Package constants
PACKAGE_NAME: Final[str] = "streamsentry"
