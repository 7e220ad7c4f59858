# ===== IMPORTS & DEPENDENCIES =====
import argparse
import asyncio
import logging
import os
import aiohttp
from typing import List, Optional

# --- Configuration ---
from gamecompare.config import LOG_LEVEL, DATABASE_PATH, PLATFORMS, PLATFORM_DISPLAY_NAMES

# --- Core Components ---
from gamecompare.core.cache import TTLCache
from gamecompare.core.database import Database
from gamecompare.core.sync import SyncEngine

# --- Data Models ---
from gamecompare.models.game import SyncResult

# --- Data Sources ---
from gamecompare.sources.steam import SteamSource
from gamecompare.sources.epic_games import EpicGamesSource
from gamecompare.sources.gog import GogSource
from gamecompare.sources.platform_manager import PlatformManager

# ===== CONFIGURATION & CONSTANTS =====
logging.basicConfig(
    level=LOG_LEVEL,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)
logger = logging.getLogger(__name__)

# ===== CORE BUSINESS LOGIC / PIPELINE =====
def build_platform_manager(session: aiohttp.ClientSession, cache: TTLCache, sync_engine: SyncEngine) -> PlatformManager:
    """Wires the three storefront adapters around one shared session, cache and sync engine."""
    return PlatformManager([
        SteamSource(session, cache, sync_engine=sync_engine),
        EpicGamesSource(session, cache, sync_engine=sync_engine),
        GogSource(session, cache, sync_engine=sync_engine),
    ])


def _log_result(result: SyncResult) -> None:
    platform = PLATFORM_DISPLAY_NAMES.get(result['platform'], result['platform'])
    if result['skipped']:
        logger.info(f"ℹ️ {platform}: skipped, last sync is still fresh.")
    elif result['success']:
        logger.info(
            f"✅ {platform}: {result['status']} - {result['games_processed']} processed "
            f"({result['games_added']} added, {result['games_updated']} updated) in {result['duration_ms']}ms"
        )
    else:
        logger.error(f"❌ {platform}: {result['status']} with {len(result['errors'])} error(s)")
    for error in result['errors'][:5]:
        logger.warning(f"   - {error}")


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Sync storefront catalogs into the local game database.")
    parser.add_argument('platform', nargs='?', default='all', choices=('all',) + PLATFORMS)
    parser.add_argument('--force', action='store_true', help="Sync even if the last run is still fresh.")
    return parser.parse_args(argv)

# ===== INITIALIZATION & STARTUP =====
async def main(argv: Optional[List[str]] = None) -> List[SyncResult]:
    """Initializes the catalog components and runs the requested sync."""
    args = parse_args(argv)
    db = Database(DATABASE_PATH)
    cache = TTLCache()
    sync_engine = SyncEngine(db)

    async with aiohttp.ClientSession() as session:
        manager = build_platform_manager(session, cache, sync_engine)
        logger.info(f"🚀🚀🚀 Starting catalog sync ({args.platform}) 🚀🚀🚀")
        results = await manager.sync_platform(args.platform, force=args.force)

    for result in results:
        _log_result(result)
    logger.info("🏁🏁🏁 Sync finished 🏁🏁🏁")
    return results

if __name__ == "__main__":
    if os.name == 'nt':
        asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())
    try:
        asyncio.run(main())
    except Exception as e:
        logger.critical(f"🔥🔥🔥 A critical error occurred during sync: {e}", exc_info=True)
