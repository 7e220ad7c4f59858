# ===== IMPORTS & DEPENDENCIES =====
import time
import logging
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Any, Sequence, Tuple

from gamecompare.config import (
    PLATFORMS, DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE, MAX_QUERY_LENGTH,
    LIVE_SEARCH_THRESHOLD, LIVE_RESULTS_PER_PLATFORM, TRENDING_TIMEFRAMES,
)
from gamecompare.core.database import Database
from gamecompare.core.errors import ValidationError
from gamecompare.utils.game_utils import utc_now, to_iso

# ===== CONFIGURATION & CONSTANTS =====
logger = logging.getLogger(__name__)

SORT_OPTIONS = ("relevance", "price_low_to_high", "price_high_to_low", "release_date", "discount")
MAX_TRENDING_LIMIT = 50
MAX_SUGGESTIONS = 20
SUGGESTIONS_PER_KIND = 5
TRENDING_MATCHES_PER_QUERY = 3
AVAILABILITY_GAME_LIMIT = 5

Row = Tuple[Dict[str, Any], Optional[Dict[str, Any]]]

# ===== VALIDATION =====
def _validate_platforms(platforms: Optional[Sequence[str]]) -> List[str]:
    platforms = list(platforms or [])
    unknown = [p for p in platforms if p not in PLATFORMS]
    if unknown:
        raise ValidationError(f"Unknown platform(s): {', '.join(map(str, unknown))}")
    return platforms


def _validate_limit(limit: int, maximum: int, name: str = 'limit') -> int:
    if not isinstance(limit, int) or isinstance(limit, bool) or not 1 <= limit <= maximum:
        raise ValidationError(f"{name} must be an integer between 1 and {maximum}")
    return limit


def _validate_query(query: str) -> str:
    if not isinstance(query, str) or not 1 <= len(query) <= MAX_QUERY_LENGTH:
        raise ValidationError(f"Query must be between 1 and {MAX_QUERY_LENGTH} characters")
    return query


def _price_bound(bounds: Dict[str, Any], key: str) -> Optional[float]:
    value = bounds.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
        raise ValidationError(f"priceRange.{key} must be a non-negative number")
    return float(value)

# ===== RESULT SHAPING =====
def _offer_summary(offer: Dict[str, Any]) -> Dict[str, Any]:
    return {
        'platform': offer['platform'],
        'price': offer.get('platform_price'),
        'originalPrice': offer.get('original_price'),
        'discountPercent': offer.get('discount_percent') or 0,
        'url': offer.get('platform_url'),
        'available': offer.get('available'),
        'drmFree': offer.get('drm_free'),
    }


def group_rows_by_game(rows: Sequence[Row]) -> List[Dict[str, Any]]:
    """
    Folds joined (game, offer) rows into one entry per game, keeping first-seen
    order. Price aggregates only consider offers with a known price.
    """
    grouped: Dict[int, Dict[str, Any]] = {}
    for game, offer in rows:
        entry = grouped.get(game['id'])
        if entry is None:
            entry = {
                **game,
                'platforms': [],
                'lowestPrice': None,
                'highestPrice': None,
                'platformCount': 0,
            }
            grouped[game['id']] = entry
        if offer is None:
            continue

        entry['platforms'].append(_offer_summary(offer))
        entry['platformCount'] += 1
        price = offer.get('platform_price')
        if price is not None:
            if entry['lowestPrice'] is None or price < entry['lowestPrice']:
                entry['lowestPrice'] = price
            if entry['highestPrice'] is None or price > entry['highestPrice']:
                entry['highestPrice'] = price
    return list(grouped.values())

# ===== CORE BUSINESS LOGIC =====
class SearchEngine:
    """Catalog search, trending, autocomplete and the thin per-user CRUD surface."""

    def __init__(self, db: Database, platform_manager=None, clock: Callable[[], datetime] = utc_now):
        self.db = db
        self.platform_manager = platform_manager
        self._clock = clock

    def _track_search(self, query: str) -> None:
        try:
            self.db.record_search(query, to_iso(self._clock()))
        except Exception as e:
            logger.warning(f"⚠️ [{self.__class__.__name__}] Failed to track popular search '{query}': {e}")

    def advanced_search(self, query: str, filters: Optional[Dict[str, Any]] = None, sort: str = 'relevance',
                        page: int = 1, limit: int = DEFAULT_PAGE_SIZE) -> Dict[str, Any]:
        started = time.perf_counter()
        query = _validate_query(query)
        filters = filters or {}
        if not isinstance(page, int) or isinstance(page, bool) or page < 1:
            raise ValidationError("page must be an integer >= 1")
        limit = _validate_limit(limit, MAX_PAGE_SIZE)
        if sort not in SORT_OPTIONS:
            raise ValidationError(f"Unknown sort '{sort}'. Expected one of: {', '.join(SORT_OPTIONS)}")
        platforms = _validate_platforms(filters.get('platforms'))
        price_range = filters.get('priceRange') or {}
        release_range = filters.get('releaseDate') or {}
        min_price = _price_bound(price_range, 'min')
        max_price = _price_bound(price_range, 'max')

        self._track_search(query)

        rows = self.db.search_game_offers(
            query,
            platforms=platforms,
            min_price=min_price,
            max_price=max_price,
            genres=filters.get('genres'),
            release_from=release_range.get('from'),
            release_to=release_range.get('to'),
            on_sale=bool(filters.get('onSale')),
            tags=filters.get('tags'),
            sort=sort,
            limit=limit,
            offset=(page - 1) * limit,
        )
        results = group_rows_by_game(rows)
        response_ms = int((time.perf_counter() - started) * 1000)
        logger.info(f"[{self.__class__.__name__}] Search '{query}' matched {len(results)} games on page {page} in {response_ms}ms.")
        return {
            'results': results,
            'pagination': {'page': page, 'limit': limit, 'total': len(results)},
            'performance': {'responseTimeMs': response_ms},
        }

    async def search_all(self, query: Optional[str] = None, platforms: Optional[Sequence[str]] = None,
                         genres: Optional[Sequence[str]] = None, price_range: Optional[Dict[str, Any]] = None,
                         limit: int = 50, offset: int = 0) -> List[Dict[str, Any]]:
        """
        Local catalog search that tops up with live storefront results when the
        catalog has fewer than LIVE_SEARCH_THRESHOLD matches for a query.
        """
        platforms = _validate_platforms(platforms)
        price_range = price_range or {}
        min_price = _price_bound(price_range, 'min')
        max_price = _price_bound(price_range, 'max')

        results: List[Dict[str, Any]] = []
        for game in self.db.find_games(text=query, genres=genres, limit=limit, offset=offset):
            offers = self.db.get_offers(game['id'])
            if platforms:
                offers = [o for o in offers if o['platform'] in platforms]
            if min_price is not None:
                offers = [o for o in offers if o['platform_price'] is not None and o['platform_price'] >= min_price]
            if max_price is not None:
                offers = [o for o in offers if o['platform_price'] is not None and o['platform_price'] <= max_price]
            if (platforms or min_price is not None or max_price is not None) and not offers:
                continue
            results.append({**game, 'offers': [_offer_summary(o) for o in offers], 'source': 'local'})

        if query and len(results) < LIVE_SEARCH_THRESHOLD and self.platform_manager is not None:
            logger.info(f"[{self.__class__.__name__}] Only {len(results)} local matches for '{query}'. Searching storefronts live.")
            live = await self.platform_manager.search_all_platforms(
                query, {'limit': LIVE_RESULTS_PER_PLATFORM}, platforms or None,
            )
            for platform_games in live.values():
                for game in platform_games[:LIVE_RESULTS_PER_PLATFORM]:
                    results.append({**game, 'source': 'live'})
        return results

    def get_trending(self, timeframe: str = 'week', platforms: Optional[Sequence[str]] = None,
                     limit: int = 20) -> Dict[str, Any]:
        if timeframe not in TRENDING_TIMEFRAMES:
            raise ValidationError(f"timeframe must be one of: {', '.join(TRENDING_TIMEFRAMES)}")
        platforms = _validate_platforms(platforms)
        limit = _validate_limit(limit, MAX_TRENDING_LIMIT)
        since = to_iso(self._clock() - timedelta(days=TRENDING_TIMEFRAMES[timeframe]))

        trending: List[Dict[str, Any]] = []
        seen = set()

        def add(game, offer, search_count=None):
            seen.add(game['id'])
            item = {**game, 'platforms': [_offer_summary(offer)] if offer else []}
            if search_count is not None:
                item['searchCount'] = search_count
            trending.append(item)

        for search in self.db.get_trending_searches(since, limit):
            if len(trending) >= limit:
                break
            rows = self.db.find_game_offer_rows_by_name(search['query'], TRENDING_MATCHES_PER_QUERY, platforms)
            for game, offer in rows:
                if game['id'] in seen:
                    continue
                if len(trending) >= limit:
                    break
                add(game, offer, search['search_count'])

        if len(trending) < limit:
            for game, offer in self.db.get_recently_updated_offer_rows(since, limit - len(trending), platforms):
                if game['id'] not in seen:
                    add(game, offer)

        return {'timeframe': timeframe, 'games': trending, 'count': len(trending)}

    def get_autocomplete_suggestions(self, query: str, limit: int = 10) -> Dict[str, Any]:
        query = _validate_query(query)
        limit = _validate_limit(limit, MAX_SUGGESTIONS)

        suggestions: List[str] = []
        candidates = self.db.find_game_names(query, SUGGESTIONS_PER_KIND) + \
            self.db.find_popular_searches(query, SUGGESTIONS_PER_KIND)
        for candidate in candidates:
            if len(suggestions) >= limit:
                break
            if candidate not in suggestions:
                suggestions.append(candidate)
        return {'query': query, 'suggestions': suggestions}

    def get_platform_availability(self, game_name: str) -> List[Dict[str, Any]]:
        """Every stored offer for up to five games whose names contain `game_name`."""
        if not game_name:
            raise ValidationError("A game name is required")
        availability = []
        for name in self.db.find_game_names(game_name, AVAILABILITY_GAME_LIMIT):
            game = self.db.find_game_by_name(name)
            if not game:
                continue
            for offer in self.db.get_offers(game['id']):
                availability.append({
                    'gameId': game['id'],
                    'name': game['name'],
                    'platform': offer['platform'],
                    'platformId': offer['platform_id'],
                    'price': offer['platform_price'],
                    'originalPrice': offer['original_price'],
                    'discountPercent': offer['discount_percent'],
                    'currency': offer['currency'],
                    'url': offer['platform_url'],
                    'imageUrl': offer['image_url'],
                    'isAvailable': offer['available'] == 'true',
                })
        return availability

    # --- Tracking & library ---

    def _require_game(self, game_id: int) -> None:
        if not self.db.get_game(game_id):
            raise ValidationError(f"Unknown game id {game_id}")

    def track_game(self, user_id: int, game_id: int, target_price: float) -> None:
        if target_price is None or target_price < 0:
            raise ValidationError("target_price must be a non-negative number")
        self._require_game(game_id)
        self.db.track_game(user_id, game_id, target_price, to_iso(self._clock()))

    def untrack_game(self, user_id: int, game_id: int) -> bool:
        return self.db.untrack_game(user_id, game_id)

    def get_tracked_games(self, user_id: int) -> List[Dict[str, Any]]:
        return self.db.get_tracked_games(user_id)

    def add_to_library(self, user_id: int, game_id: int) -> None:
        self._require_game(game_id)
        self.db.add_to_library(user_id, game_id, to_iso(self._clock()))

    def remove_from_library(self, user_id: int, game_id: int) -> bool:
        return self.db.remove_from_library(user_id, game_id)

    def get_library(self, user_id: int) -> List[Dict[str, Any]]:
        return self.db.get_library(user_id)
