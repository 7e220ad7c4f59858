# ===== IMPORTS & DEPENDENCIES =====
import json
import logging
import aiohttp
from typing import List, Optional, Dict, Any

from gamecompare.core.base_client import BaseWebClient
from gamecompare.core.cache import TTLCache
from gamecompare.core.errors import TransportError
from gamecompare.models.game import NormalizedGame, SyncResult, TRI_TRUE
from gamecompare.config import (
    GOG_CATALOG_URL, GOG_GAME_URL, GOG_STORE_URL, GOG_CACHE_TTL, RATE_LIMIT_DELAY,
    SYNC_BATCH_SIZE, LIVE_RESULTS_PER_PLATFORM,
)
from gamecompare.utils.game_utils import sanitize_html, parse_release_date, to_tri_state

# ===== CONFIGURATION & CONSTANTS =====
logger = logging.getLogger(__name__)

# ===== NORMALIZATION =====
def _to_amount(value: Any) -> Optional[float]:
    """GOG amounts come as numbers or numeric strings, already in major units."""
    if value is None or value == '':
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _names(values: Any) -> List[str]:
    names = []
    for value in values or []:
        if isinstance(value, dict):
            value = value.get('name')
        if value:
            names.append(str(value))
    return names


def normalize_gog_game(item: Dict[str, Any]) -> NormalizedGame:
    """
    Transforms one GOG catalog item into a NormalizedGame.
    GOG's discount percent and DRM-free flag are trusted as provided.
    """
    title = (item.get('title') or '').strip()
    game_id = item.get('id')
    if not title or game_id is None:
        raise ValueError(f"GOG item is missing a title or id (id={game_id!r})")

    price = item.get('price') or {}
    images = item.get('images') or {}
    cover_image = images.get('logo') or images.get('boxArtImage') or None
    slug = item.get('slug')
    available = to_tri_state(item['isAvailable']) if 'isAvailable' in item else TRI_TRUE

    return NormalizedGame(
        name=title,
        description=sanitize_html(item.get('description') or item.get('overview')) or None,
        short_description=sanitize_html(item.get('overview')) or None,
        cover_image=cover_image,
        genres=_names(item.get('genre') or item.get('genres')),
        tags=_names(item.get('tags')),
        developer=item.get('developer') or None,
        publisher=item.get('publisher') or None,
        release_date=parse_release_date(item.get('releaseDate')),
        platform_data={
            'platform': 'gog',
            'platform_id': str(game_id),
            'price': _to_amount(price.get('finalAmount')),
            'original_price': _to_amount(price.get('originalAmount')),
            'discount_percent': int(price.get('discountPercent') or 0),
            'currency': price.get('currency') or 'USD',
            'url': GOG_STORE_URL.format(slug=slug) if slug else None,
            'image_url': cover_image,
            'available': available,
            'drm_free': to_tri_state(item.get('isDRMFree')),
            'metadata': {'slug': slug},
        },
    )

# ===== CORE BUSINESS LOGIC =====
class GogSource(BaseWebClient):
    """GOG adapter for the public catalog REST API."""
    platform = 'gog'

    def __init__(self, session: aiohttp.ClientSession, cache: TTLCache, sync_engine=None,
                 cache_ttl: int = GOG_CACHE_TTL, rate_limit_delay: float = RATE_LIMIT_DELAY, **client_options):
        super().__init__(session, cache, cache_ttl, rate_limit_delay=rate_limit_delay, **client_options)
        self.sync_engine = sync_engine

    async def _get_catalog_page(self, query: Optional[str], page: int, limit: int) -> List[Dict[str, Any]]:
        params: Dict[str, Any] = {'page': page, 'limit': limit}
        if query:
            params['search'] = query
        response = await self._fetch(GOG_CATALOG_URL, params=params)
        items = ((response or {}).get('_embedded') or {}).get('items') or []
        logger.info(f"[{self.__class__.__name__}] Received {len(items)} catalog items (page {page}).")
        return items

    async def search_games(self, query: str, filters: Optional[Dict[str, Any]] = None) -> List[NormalizedGame]:
        filters = filters or {}
        params = {
            'query': query,
            'page': int(filters.get('page', 1)),
            'limit': int(filters.get('limit', LIVE_RESULTS_PER_PLATFORM)),
        }
        cache_key = f"gog:search:{json.dumps(params, sort_keys=True)}"

        async def load():
            items = await self._get_catalog_page(query, params['page'], params['limit'])
            games = []
            for item in items:
                try:
                    games.append(normalize_gog_game(item))
                except ValueError as e:
                    logger.warning(f"⚠️ [{self.__class__.__name__}] Skipping item: {e}")
            return games

        return await self._cached(cache_key, load)

    async def get_game_details(self, platform_id: str) -> Optional[NormalizedGame]:
        async def load():
            try:
                item = await self._fetch(GOG_GAME_URL.format(game_id=platform_id))
            except TransportError as e:
                if e.status == 404:
                    logger.info(f"[{self.__class__.__name__}] GOG game {platform_id} not found.")
                    return None
                raise
            if not item or not item.get('title'):
                return None
            return normalize_gog_game(item)
        return await self._cached(f'gog:details:{platform_id}', load)

    async def fetch_sync_batch(self, query: Optional[str] = None) -> List[Dict[str, Any]]:
        return await self._get_catalog_page(query, page=1, limit=SYNC_BATCH_SIZE)

    async def prepare_record(self, raw: Dict[str, Any]) -> NormalizedGame:
        return normalize_gog_game(raw)

    async def sync_games(self, force: bool = False, sync_type: str = 'manual', query: Optional[str] = None) -> SyncResult:
        if self.sync_engine is None:
            raise RuntimeError(f"{self.__class__.__name__} has no sync engine attached")
        return await self.sync_engine.sync_games(self, force=force, sync_type=sync_type, query=query)
