# ===== TYPES & INTERFACES =====

from typing import TypedDict, List, Optional, Dict, Any

# Tri-state values used for availability and DRM-free flags.
TRI_TRUE = "true"
TRI_FALSE = "false"
TRI_UNKNOWN = "unknown"

SYNC_TYPES = ("full", "incremental", "manual")

STATUS_PENDING = "pending"
STATUS_RUNNING = "running"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"
STATUS_PARTIAL = "partial"


class PlatformData(TypedDict):
    """
    One storefront's offer for a game, as produced by a platform adapter.

    Prices are in major currency units (e.g. dollars). `available` and
    `drm_free` are tri-state strings: 'true', 'false' or 'unknown'.
    """
    platform: str
    platform_id: str
    price: Optional[float]
    original_price: Optional[float]
    discount_percent: int
    currency: str
    url: Optional[str]
    image_url: Optional[str]
    available: str
    drm_free: str
    metadata: Dict[str, Any]


class NormalizedGame(TypedDict):
    """
    The single shape every adapter normalizes its upstream payload into.
    Nothing downstream of the adapters sees raw storefront JSON.

    Attributes:
        name (str): Title as listed by the storefront; the cross-platform merge key.
        description (Optional[str]): Plain-text description (HTML stripped).
        short_description (Optional[str]): Short blurb when the storefront has one.
        cover_image (Optional[str]): Preferred cover/box art URL.
        genres (List[str]): Genre names.
        tags (List[str]): Free-form tags.
        developer (Optional[str]): Developer name.
        publisher (Optional[str]): Publisher name.
        release_date (Optional[str]): ISO date (YYYY-MM-DD) or None.
        platform_data (PlatformData): The storefront offer.
    """
    name: str
    description: Optional[str]
    short_description: Optional[str]
    cover_image: Optional[str]
    genres: List[str]
    tags: List[str]
    developer: Optional[str]
    publisher: Optional[str]
    release_date: Optional[str]
    platform_data: PlatformData


# Search results carry the same shape as a normalized game.
PlatformGame = NormalizedGame


class SyncResult(TypedDict):
    """Outcome of one platform sync run."""
    platform: str
    success: bool
    status: str
    skipped: bool
    games_processed: int
    games_added: int
    games_updated: int
    games_synced: int
    errors: List[str]
    duration_ms: int
    sync_log_id: Optional[int]
