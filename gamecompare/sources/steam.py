# ===== IMPORTS & DEPENDENCIES =====
import json
import logging
import aiohttp
from typing import Optional, Dict, Any, List

from gamecompare.core.base_client import BaseWebClient
from gamecompare.core.cache import TTLCache
from gamecompare.models.game import NormalizedGame, SyncResult, TRI_TRUE, TRI_FALSE, TRI_UNKNOWN
from gamecompare.config import (
    STEAM_APP_LIST_URL, STEAM_APP_DETAILS_URL, STEAM_STORE_URL, STEAM_HEADER_IMAGE_URL,
    STEAM_CACHE_TTL, RATE_LIMIT_DELAY, SYNC_BATCH_SIZE, LIVE_RESULTS_PER_PLATFORM,
)
from gamecompare.utils.game_utils import sanitize_html, parse_release_date

# ===== CONFIGURATION & CONSTANTS =====
logger = logging.getLogger(__name__)

# ===== NORMALIZATION =====
def normalize_steam_game(app_id: str, name: Optional[str], details: Optional[Dict[str, Any]]) -> NormalizedGame:
    """
    Builds a NormalizedGame from an app-list entry plus its (optional) appdetails payload.
    Steam prices arrive in minor units; the discount percent is taken as provided.
    """
    details = details or {}
    title = (details.get('name') or name or '').strip()
    if not title:
        raise ValueError(f"Steam app {app_id} has no name")

    price = original_price = None
    discount_percent = 0
    currency = 'USD'
    price_overview = details.get('price_overview')
    if price_overview:
        price = price_overview['final'] / 100 if price_overview.get('final') is not None else None
        original_price = price_overview['initial'] / 100 if price_overview.get('initial') is not None else None
        discount_percent = int(price_overview.get('discount_percent') or 0)
        currency = price_overview.get('currency') or currency
    elif details.get('is_free'):
        price = original_price = 0.0

    if not details:
        available = TRI_UNKNOWN
    elif (details.get('release_date') or {}).get('coming_soon'):
        available = TRI_FALSE
    else:
        available = TRI_TRUE

    developers = details.get('developers') or []
    publishers = details.get('publishers') or []
    cover_image = details.get('header_image') or STEAM_HEADER_IMAGE_URL.format(app_id=app_id)

    return NormalizedGame(
        name=title,
        description=sanitize_html(details.get('about_the_game') or details.get('detailed_description')) or None,
        short_description=sanitize_html(details.get('short_description')) or None,
        cover_image=cover_image,
        genres=[g['description'] for g in details.get('genres', []) if g.get('description')],
        tags=[c['description'] for c in details.get('categories', []) if c.get('description')],
        developer=developers[0] if developers else None,
        publisher=publishers[0] if publishers else None,
        release_date=parse_release_date((details.get('release_date') or {}).get('date')),
        platform_data={
            'platform': 'steam',
            'platform_id': str(app_id),
            'price': price,
            'original_price': original_price,
            'discount_percent': discount_percent,
            'currency': currency,
            'url': STEAM_STORE_URL.format(app_id=app_id),
            'image_url': cover_image,
            'available': available,
            'drm_free': TRI_UNKNOWN,
            'metadata': {'type': details.get('type'), 'is_free': bool(details.get('is_free'))},
        },
    )

# ===== CORE BUSINESS LOGIC =====
class SteamSource(BaseWebClient):
    """
    Steam storefront adapter. The public app list only carries id and name, so
    every game needs a second appdetails call for prices, genres and images.
    """
    platform = 'steam'

    def __init__(self, session: aiohttp.ClientSession, cache: TTLCache, sync_engine=None,
                 cache_ttl: int = STEAM_CACHE_TTL, rate_limit_delay: float = RATE_LIMIT_DELAY, **client_options):
        super().__init__(session, cache, cache_ttl, rate_limit_delay=rate_limit_delay, **client_options)
        self.sync_engine = sync_engine

    async def _get_app_list(self) -> List[Dict[str, str]]:
        """The full Steam app list (id + name), cached for the platform TTL."""
        async def load():
            data = await self._fetch(STEAM_APP_LIST_URL)
            apps = ((data or {}).get('applist') or {}).get('apps') or []
            logger.info(f"[{self.__class__.__name__}] Received {len(apps)} apps from the app list.")
            return [
                {'appid': str(app['appid']), 'name': app['name'].strip()}
                for app in apps
                if app.get('appid') and (app.get('name') or '').strip()
            ]
        return await self._cached('steam:applist', load)

    async def _get_app_details(self, app_id: str) -> Optional[Dict[str, Any]]:
        """The appdetails `data` block for one app, or None when Steam reports no success."""
        async def load():
            data = await self._fetch(STEAM_APP_DETAILS_URL, params={'appids': app_id, 'cc': 'us', 'l': 'english'})
            entry = (data or {}).get(str(app_id)) or {}
            if not entry.get('success') or not entry.get('data'):
                logger.warning(f"[{self.__class__.__name__}] Steam API response for App ID {app_id} was unsuccessful or empty.")
                return None
            return entry['data']
        return await self._cached(f'steam:details:{app_id}', load)

    async def search_games(self, query: str, filters: Optional[Dict[str, Any]] = None) -> List[NormalizedGame]:
        """Name search over the app list, enriched with appdetails for the first `limit` matches."""
        limit = int((filters or {}).get('limit', LIVE_RESULTS_PER_PLATFORM))
        cache_key = f"steam:search:{json.dumps({'query': query, 'limit': limit}, sort_keys=True)}"

        async def load():
            query_lower = query.lower()
            apps = await self._get_app_list()
            matches = [app for app in apps if query_lower in app['name'].lower()][:limit]
            results = []
            for app in matches:
                details = await self._get_app_details(app['appid'])
                results.append(normalize_steam_game(app['appid'], app['name'], details))
            logger.info(f"✅ [{self.__class__.__name__}] Search '{query}' returned {len(results)} games.")
            return results

        return await self._cached(cache_key, load)

    async def get_game_details(self, platform_id: str) -> Optional[NormalizedGame]:
        details = await self._get_app_details(str(platform_id))
        if not details:
            return None
        return normalize_steam_game(str(platform_id), details.get('name'), details)

    async def fetch_sync_batch(self, query: Optional[str] = None) -> List[Dict[str, str]]:
        apps = await self._get_app_list()
        if query:
            query_lower = query.lower()
            apps = [app for app in apps if query_lower in app['name'].lower()]
        return apps[:SYNC_BATCH_SIZE]

    async def prepare_record(self, raw: Dict[str, str]) -> NormalizedGame:
        details = await self._get_app_details(raw['appid'])
        return normalize_steam_game(raw['appid'], raw.get('name'), details)

    async def sync_games(self, force: bool = False, sync_type: str = 'manual', query: Optional[str] = None) -> SyncResult:
        if self.sync_engine is None:
            raise RuntimeError(f"{self.__class__.__name__} has no sync engine attached")
        return await self.sync_engine.sync_games(self, force=force, sync_type=sync_type, query=query)
