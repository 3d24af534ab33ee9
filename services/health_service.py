from __future__ import annotations

import logging
from typing import Optional

from services.cache_service import CacheService
from services.repository_service import RepositoryService

logger = logging.getLogger(__name__)


class HealthService:

    def __init__(self, repo: RepositoryService, cache: Optional[CacheService] = None):
        self.repo = repo
        self.cache = cache

    def check_db_health(self) -> None:
        logger.info("Pinging database...")
        self.repo.ping()

    def check_cache_health(self) -> None:
        if self.cache is None:
            return
        logger.info("Pinging cache...")
        self.cache.ping()
