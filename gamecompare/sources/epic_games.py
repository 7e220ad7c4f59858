# ===== IMPORTS & DEPENDENCIES =====
import json
import logging
import aiohttp
from typing import List, Optional, Dict, Any, Tuple

from gamecompare.core.base_client import BaseWebClient
from gamecompare.core.cache import TTLCache
from gamecompare.core.errors import TransportError
from gamecompare.models.game import NormalizedGame, SyncResult, TRI_TRUE, TRI_UNKNOWN
from gamecompare.config import (
    EPIC_GAMES_API_URL, EPIC_GAMES_HEADERS, EPIC_STORE_URL, EPIC_CACHE_TTL, RATE_LIMIT_DELAY,
    SYNC_BATCH_SIZE, LIVE_RESULTS_PER_PLATFORM, COUNTRY_CODE, LOCALE,
)
from gamecompare.utils.game_utils import sanitize_html, parse_release_date, round_half_up

# ===== CONFIGURATION & CONSTANTS =====
logger = logging.getLogger(__name__)

# Image types in order of preference for the cover.
EPIC_COVER_IMAGE_TYPES = ('Thumbnail', 'DieselGameBox')

EPIC_SEARCH_QUERY = """
    query searchStoreQuery($allowCountries: String, $category: String, $count: Int, $country: String!,
                           $keywords: String, $locale: String, $sortBy: String, $sortDir: String, $start: Int,
                           $withPrice: Boolean) {
        Catalog {
            searchStore(allowCountries: $allowCountries, category: $category, count: $count, country: $country,
                        keywords: $keywords, locale: $locale, sortBy: $sortBy, sortDir: $sortDir, start: $start,
                        withPrice: $withPrice) {
                elements {
                    id, title, description, productSlug, urlSlug, releaseDate, developer, publisher,
                    keyImages { type, url },
                    categories { path, name },
                    tags { name },
                    seller { name },
                    price(country: $country) {
                        totalPrice { discountPrice, originalPrice, currencyCode }
                    }
                }
                paging { count, total }
            }
        }
    }
"""

# ===== NORMALIZATION =====
def _pick_cover_image(key_images: List[Dict[str, Any]]) -> Optional[str]:
    """Prefers a Thumbnail, then a DieselGameBox, then whatever image comes first."""
    for img_type in EPIC_COVER_IMAGE_TYPES:
        for img in key_images:
            if img.get('type') == img_type and img.get('url'):
                return img['url']
    for img in key_images:
        if img.get('url'):
            return img['url']
    return None


def _epic_prices(element: Dict[str, Any]) -> Tuple[Optional[float], Optional[float], int, str]:
    """
    Returns (price, original_price, discount_percent, currency).
    Epic reports minor units; the discount percent is derived from the two prices
    rather than taken from upstream, and is 0 when the original price is absent.
    """
    total = ((element.get('price') or {}).get('totalPrice')) or {}
    currency = total.get('currencyCode') or 'USD'
    original_minor = total.get('originalPrice')
    discount_minor = total.get('discountPrice')

    if original_minor is None:
        price = discount_minor / 100 if discount_minor is not None else None
        return price, None, 0, currency

    if discount_minor is None:
        discount_minor = original_minor
    discount_percent = 0
    if original_minor > 0:
        discount_percent = round_half_up((original_minor - discount_minor) / original_minor * 100)
        discount_percent = max(0, min(100, discount_percent))
    return discount_minor / 100, original_minor / 100, discount_percent, currency


def normalize_epic_game(element: Dict[str, Any]) -> NormalizedGame:
    """
    Transforms one raw searchStore element into the standardized NormalizedGame format.
    """
    title = (element.get('title') or '').strip()
    game_id = element.get('id')
    if not title or not game_id:
        raise ValueError(f"Epic element is missing a title or id (id={game_id!r})")

    price, original_price, discount_percent, currency = _epic_prices(element)
    cover_image = _pick_cover_image(element.get('keyImages') or [])

    product_slug = element.get('productSlug') or element.get('urlSlug')
    if product_slug:
        product_slug = product_slug.replace('/home', '')
    url = EPIC_STORE_URL.format(slug=product_slug) if product_slug else None

    seller = (element.get('seller') or {}).get('name')
    categories = element.get('categories') or []

    return NormalizedGame(
        name=title,
        description=sanitize_html(element.get('description')) or None,
        short_description=sanitize_html(element.get('shortDescription')) or None,
        cover_image=cover_image,
        genres=[c.get('name') or c.get('path') for c in categories if c.get('name') or c.get('path')],
        tags=[t['name'] for t in element.get('tags') or [] if t.get('name')],
        developer=element.get('developer') or seller,
        publisher=element.get('publisher') or seller,
        release_date=parse_release_date(element.get('releaseDate')),
        platform_data={
            'platform': 'epic',
            'platform_id': str(game_id),
            'price': price,
            'original_price': original_price,
            'discount_percent': discount_percent,
            'currency': currency,
            'url': url,
            'image_url': cover_image,
            'available': TRI_TRUE,
            'drm_free': TRI_UNKNOWN,
            'metadata': {'product_slug': product_slug, 'seller': seller},
        },
    )

# ===== CORE BUSINESS LOGIC =====
class EpicGamesSource(BaseWebClient):
    """Epic Games Store adapter backed by the storefront's GraphQL catalog endpoint."""
    platform = 'epic'

    def __init__(self, session: aiohttp.ClientSession, cache: TTLCache, sync_engine=None,
                 cache_ttl: int = EPIC_CACHE_TTL, rate_limit_delay: float = RATE_LIMIT_DELAY, **client_options):
        super().__init__(session, cache, cache_ttl, rate_limit_delay=rate_limit_delay, **client_options)
        self.sync_engine = sync_engine

    async def _search_store(self, keywords: str = '', count: int = SYNC_BATCH_SIZE, start: int = 0,
                            sort_by: str = 'relevancy', sort_dir: str = 'DESC',
                            category: str = 'games/edition/base') -> List[Dict[str, Any]]:
        """Runs the searchStore query and returns its raw elements."""
        variables = {
            "allowCountries": COUNTRY_CODE,
            "category": category,
            "count": count,
            "country": COUNTRY_CODE,
            "keywords": keywords,
            "locale": LOCALE,
            "sortBy": sort_by,
            "sortDir": sort_dir,
            "start": start,
            "withPrice": True,
        }
        response = await self._fetch(
            EPIC_GAMES_API_URL, method='POST', headers=EPIC_GAMES_HEADERS,
            payload={"query": EPIC_SEARCH_QUERY, "variables": variables},
        )

        if not response or 'data' not in response or response.get('data') is None:
            errors = (response or {}).get('errors') or []
            message = errors[0].get('message') if errors and isinstance(errors[0], dict) else 'Response carried no data'
            raise TransportError(EPIC_GAMES_API_URL, message)

        elements = (((response.get('data') or {}).get('Catalog') or {}).get('searchStore') or {}).get('elements') or []
        logger.info(f"[{self.__class__.__name__}] Received {len(elements)} raw elements from API.")
        return elements

    async def search_games(self, query: str, filters: Optional[Dict[str, Any]] = None) -> List[NormalizedGame]:
        filters = filters or {}
        params = {
            'query': query,
            'count': int(filters.get('limit', LIVE_RESULTS_PER_PLATFORM)),
            'start': int(filters.get('offset', 0)),
            'sort_by': filters.get('sort_by', 'relevancy'),
            'sort_dir': filters.get('sort_dir', 'DESC'),
        }
        cache_key = f"epic:search:{json.dumps(params, sort_keys=True)}"

        async def load():
            elements = await self._search_store(
                keywords=query, count=params['count'], start=params['start'],
                sort_by=params['sort_by'], sort_dir=params['sort_dir'],
            )
            games = []
            for element in elements:
                try:
                    games.append(normalize_epic_game(element))
                except ValueError as e:
                    logger.warning(f"⚠️ [{self.__class__.__name__}] Skipping element: {e}")
            return games

        return await self._cached(cache_key, load)

    async def get_game_details(self, platform_id: str) -> Optional[NormalizedGame]:
        """Looks an offer up by id or product slug. Epic has no public by-id endpoint, so this searches."""
        async def load():
            elements = await self._search_store(keywords=platform_id, count=10)
            for element in elements:
                slug = (element.get('productSlug') or element.get('urlSlug') or '').replace('/home', '')
                if platform_id in (element.get('id'), slug):
                    return normalize_epic_game(element)
            logger.info(f"[{self.__class__.__name__}] No Epic element matches '{platform_id}'.")
            return None
        return await self._cached(f'epic:details:{platform_id}', load)

    async def fetch_sync_batch(self, query: Optional[str] = None) -> List[Dict[str, Any]]:
        return await self._search_store(keywords=query or '', count=SYNC_BATCH_SIZE, sort_by='effectiveDate')

    async def prepare_record(self, raw: Dict[str, Any]) -> NormalizedGame:
        return normalize_epic_game(raw)

    async def sync_games(self, force: bool = False, sync_type: str = 'manual', query: Optional[str] = None) -> SyncResult:
        if self.sync_engine is None:
            raise RuntimeError(f"{self.__class__.__name__} has no sync engine attached")
        return await self.sync_engine.sync_games(self, force=force, sync_type=sync_type, query=query)
