# ===== IMPORTS & DEPENDENCIES =====
import json
import logging
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Any

from gamecompare.config import PLATFORMS, COMPARISON_CACHE_TTL
from gamecompare.core.database import Database
from gamecompare.core.errors import NotFoundError, ValidationError
from gamecompare.models.game import TRI_TRUE
from gamecompare.utils.game_utils import utc_now, to_iso, from_iso

# ===== CONFIGURATION & CONSTANTS =====
logger = logging.getLogger(__name__)

PRIORITY_CHEAPEST = 1
PRIORITY_BIG_DISCOUNT = 2
PRIORITY_DISCOUNT = 3
PRIORITY_DRM_FREE = 4
BIG_DISCOUNT_PERCENT = 50

# ===== CORE BUSINESS LOGIC =====
def _platform_entry(offer: Dict[str, Any]) -> Dict[str, Any]:
    entry = {
        'price': offer.get('platform_price'),
        'originalPrice': offer.get('original_price'),
        'discountPercent': offer.get('discount_percent') or 0,
        'url': offer.get('platform_url'),
        'available': offer.get('available'),
        'currency': offer.get('currency'),
    }
    if offer['platform'] == 'gog':
        entry['drmFree'] = offer.get('drm_free')
    return entry


def build_comparison(game: Dict[str, Any], offers: List[Dict[str, Any]], computed_at: str) -> Dict[str, Any]:
    """
    Derives the cross-platform summary for one game from its offer rows.
    Ties on the lowest price go to the first platform in steam, epic, gog order.
    """
    by_platform = {offer['platform']: offer for offer in offers}
    comparison: Dict[str, Any] = {'gameId': game['id'], 'gameName': game['name']}
    for platform in PLATFORMS:
        offer = by_platform.get(platform)
        comparison[platform] = _platform_entry(offer) if offer else None

    lowest_price: Optional[float] = None
    cheapest_platform: Optional[str] = None
    for platform in PLATFORMS:
        entry = comparison[platform]
        if entry and entry['price'] is not None and (lowest_price is None or entry['price'] < lowest_price):
            lowest_price = entry['price']
            cheapest_platform = platform

    comparison['cheapestOption'] = None
    if cheapest_platform:
        savings = {}
        for platform in PLATFORMS:
            entry = comparison[platform]
            if platform != cheapest_platform and entry and entry['price'] is not None and entry['price'] > lowest_price:
                savings[platform] = round(entry['price'] - lowest_price, 2)
        comparison['cheapestOption'] = {'platform': cheapest_platform, 'price': lowest_price, 'savings': savings}

    best_discount = 0
    best_platform: Optional[str] = None
    for platform in PLATFORMS:
        entry = comparison[platform]
        if entry and entry['available'] == TRI_TRUE and entry['discountPercent'] > best_discount:
            best_discount = entry['discountPercent']
            best_platform = platform

    comparison['bestDeal'] = None
    if best_platform:
        comparison['bestDeal'] = {
            'platform': best_platform,
            'discountPercent': best_discount,
            'price': comparison[best_platform]['price'],
            'originalPrice': comparison[best_platform]['originalPrice'],
        }

    comparison['computedAt'] = computed_at
    return comparison


class ComparisonEngine:
    """Computes, caches and explains cross-platform price comparisons."""

    def __init__(self, db: Database, cache_ttl: int = COMPARISON_CACHE_TTL,
                 clock: Callable[[], datetime] = utc_now):
        self.db = db
        self.cache_ttl = cache_ttl
        self._clock = clock

    def _resolve_game(self, game_id: Optional[int], game_name: Optional[str]) -> Dict[str, Any]:
        if game_id is None and not game_name:
            raise ValidationError("Either a game id or a game name is required")
        game = self.db.get_game(game_id) if game_id is not None else self.db.find_game_by_name(game_name)
        if not game:
            raise NotFoundError(f"Game not found: {game_id if game_id is not None else game_name}")
        return game

    def _snapshot_prices(self, offers: List[Dict[str, Any]]) -> int:
        """Appends one history row per offer whose last sync is newer than its latest snapshot."""
        written = 0
        for offer in offers:
            observed_at = offer.get('last_sync_date')
            if not observed_at:
                continue
            latest = self.db.get_latest_price_snapshot(offer['id'])
            if latest is None or observed_at > latest['recorded_at']:
                self.db.append_price_history(offer, observed_at)
                written += 1
        return written

    def compare(self, game_id: Optional[int] = None, game_name: Optional[str] = None) -> Dict[str, Any]:
        game = self._resolve_game(game_id, game_name)
        now = self._clock()

        cached = self.db.get_comparison_cache(game['id'])
        if cached:
            age = now - from_iso(cached['last_updated'])
            if age < timedelta(seconds=self.cache_ttl):
                logger.info(f"✅ [{self.__class__.__name__}] Loading comparison for game #{game['id']} from cache.")
                return json.loads(cached['comparison_data'])

        offers = self.db.get_offers(game['id'])
        comparison = build_comparison(game, offers, to_iso(now))
        self.db.upsert_comparison_cache(game['id'], json.dumps(comparison), to_iso(now))
        snapshots = self._snapshot_prices(offers)
        logger.info(
            f"💾 [{self.__class__.__name__}] Comparison for '{game['name']}' recomputed "
            f"({len(offers)} offers, {snapshots} new price snapshots)."
        )
        return comparison

    def where_to_buy(self, game_id: int) -> Dict[str, Any]:
        """
        Ranks purchase recommendations from the cached comparison only. The
        comparison has to be computed first; nothing is recomputed here.
        """
        cached = self.db.get_comparison_cache(game_id)
        if not cached:
            raise NotFoundError(f"No comparison computed for game #{game_id}. Run a price comparison first.")
        comparison = json.loads(cached['comparison_data'])

        recommendations = []
        cheapest = comparison.get('cheapestOption')
        if cheapest:
            recommendations.append({
                'type': 'cheapest',
                'platform': cheapest['platform'],
                'price': cheapest['price'],
                'reason': f"Best price available at ${cheapest['price']:.2f}",
                'priority': PRIORITY_CHEAPEST,
            })

        best_deal = comparison.get('bestDeal')
        if best_deal and best_deal['discountPercent'] > 0:
            saved = (best_deal.get('originalPrice') or 0) - (best_deal.get('price') or 0)
            recommendations.append({
                'type': 'best_deal',
                'platform': best_deal['platform'],
                'price': best_deal['price'],
                'discountPercent': best_deal['discountPercent'],
                'reason': f"{best_deal['discountPercent']}% off - Save ${saved:.2f}",
                'priority': PRIORITY_BIG_DISCOUNT if best_deal['discountPercent'] >= BIG_DISCOUNT_PERCENT else PRIORITY_DISCOUNT,
            })

        gog = comparison.get('gog')
        if gog and gog.get('drmFree') == TRI_TRUE:
            recommendations.append({
                'type': 'drm_free',
                'platform': 'gog',
                'price': gog['price'],
                'reason': 'DRM-free copy - Play without online restrictions',
                'priority': PRIORITY_DRM_FREE,
            })

        recommendations.sort(key=lambda rec: rec['priority'])
        return {
            'recommendation': recommendations[0] if recommendations else None,
            'alternatives': recommendations[1:],
            'allOptions': {platform: comparison.get(platform) for platform in PLATFORMS},
        }

    def get_price_history(self, game_id: int, platform: Optional[str] = None) -> List[Dict[str, Any]]:
        if platform is not None and platform not in PLATFORMS:
            raise ValidationError(f"Unknown platform '{platform}'")
        return self.db.get_price_history(game_id, platform)
