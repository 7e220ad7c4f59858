# ===== IMPORTS & DEPENDENCIES =====
import asyncio
import logging
from typing import Dict, List, Optional, Any, Sequence

from gamecompare.core.errors import NotFoundError, ValidationError
from gamecompare.models.game import PlatformGame, SyncResult, SYNC_TYPES, STATUS_FAILED

# ===== CONFIGURATION & CONSTANTS =====
logger = logging.getLogger(__name__)

# ===== CORE BUSINESS LOGIC =====
class PlatformManager:
    """
    Registry of storefront adapters keyed by platform name.
    Fan-out calls settle every platform; one failing storefront never sinks the others.
    """

    def __init__(self, sources: Sequence[Any]):
        self.sources: Dict[str, Any] = {source.platform: source for source in sources}
        logger.info(f"[{self.__class__.__name__}] Registered platforms: {', '.join(self.sources)}")

    @property
    def platforms(self) -> List[str]:
        return list(self.sources)

    def get_source(self, platform: str):
        source = self.sources.get(platform)
        if source is None:
            raise ValidationError(f"Unknown platform '{platform}'. Expected one of: {', '.join(self.sources)}")
        return source

    async def search_all_platforms(self, query: str, filters: Optional[Dict[str, Any]] = None,
                                   platforms: Optional[Sequence[str]] = None) -> Dict[str, List[PlatformGame]]:
        """Searches every (or every selected) platform concurrently. A failed platform yields an empty list."""
        selected = [self.get_source(p) for p in (platforms or self.platforms)]
        tasks = [source.search_games(query, filters) for source in selected]
        results = await asyncio.gather(*tasks, return_exceptions=True)

        merged: Dict[str, List[PlatformGame]] = {}
        for source, result in zip(selected, results):
            if isinstance(result, Exception):
                logger.error(f"❌ [{self.__class__.__name__}] Search failed on {source.platform}: {result}")
                merged[source.platform] = []
            else:
                merged[source.platform] = result
                logger.info(f"✅ [{self.__class__.__name__}] {source.platform} returned {len(result)} results for '{query}'.")
        return merged

    async def get_game_details(self, platform: str, platform_id: str) -> PlatformGame:
        source = self.get_source(platform)
        game = await source.get_game_details(platform_id)
        if game is None:
            raise NotFoundError(f"No {platform} game with id '{platform_id}'")
        return game

    async def sync_platform(self, platform: str = 'all', force: bool = False,
                            sync_type: str = 'manual') -> List[SyncResult]:
        """Runs one platform's sync, or all of them concurrently when `platform` is 'all'."""
        if sync_type not in SYNC_TYPES:
            raise ValidationError(f"Unknown sync type '{sync_type}'. Expected one of: {', '.join(SYNC_TYPES)}")
        if platform == 'all':
            selected = list(self.sources.values())
        else:
            selected = [self.get_source(platform)]

        logger.info(f"🚀 [{self.__class__.__name__}] Starting sync for: {', '.join(s.platform for s in selected)} (force={force})")
        results = await asyncio.gather(
            *(source.sync_games(force=force, sync_type=sync_type) for source in selected),
            return_exceptions=True,
        )

        outcomes: List[SyncResult] = []
        for source, result in zip(selected, results):
            if isinstance(result, Exception):
                logger.error(f"❌ [{self.__class__.__name__}] Sync crashed on {source.platform}: {result}")
                outcomes.append(SyncResult(
                    platform=source.platform, success=False, status=STATUS_FAILED, skipped=False,
                    games_processed=0, games_added=0, games_updated=0, games_synced=0,
                    errors=[str(result)], duration_ms=0, sync_log_id=None,
                ))
            else:
                outcomes.append(result)
        return outcomes

    async def sync_all(self, force: bool = False) -> List[SyncResult]:
        return await self.sync_platform('all', force=force)
