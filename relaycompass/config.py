"""
Run configuration and its limits
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .models import AntiCensorship, IPVersion


DEFAULT_MAX_DISTANCE = 500.0
MAX_DISTANCE_LIMIT = 20000.0
DISTANCE_STEP = 500.0

DEFAULT_TIMEOUT_MS = 500
MIN_TIMEOUT_MS = 100
MAX_TIMEOUT_MS = 5000

DEFAULT_WORKERS = 25
MIN_WORKERS = 1
MAX_WORKERS = 200


@dataclass
class Config:
    """Options for one relaycompass run"""
    max_distance: Optional[float] = None
    anti_censorship: AntiCensorship = AntiCensorship.NONE
    daita: bool = False
    ip_version: IPVersion = IPVersion.IPV4
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    workers: int = DEFAULT_WORKERS
    log_level: str = 'error'
    relays_file: Optional[Path] = None

    @property
    def best_server_mode(self) -> bool:
        """No filter option given: show only the single best relay"""
        return (
            self.max_distance is None
            and self.anti_censorship is AntiCensorship.NONE
            and not self.daita
            and not self.ip_version.is_ipv6
        )

    @property
    def distance_limit(self) -> float:
        if self.max_distance is None:
            return DEFAULT_MAX_DISTANCE
        return self.max_distance
