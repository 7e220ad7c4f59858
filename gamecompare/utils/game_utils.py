# ===== IMPORTS & DEPENDENCIES =====
import re
import math
import logging
from datetime import datetime, timezone
from typing import Optional, Any
from bs4 import BeautifulSoup

from gamecompare.models.game import TRI_TRUE, TRI_FALSE, TRI_UNKNOWN

# ===== CONFIGURATION & CONSTANTS =====
logger = logging.getLogger(__name__)

# Date formats seen in storefront payloads (Steam uses human-readable dates).
_RELEASE_DATE_FORMATS = ("%b %d, %Y", "%d %b, %Y", "%B %d, %Y", "%d %B, %Y", "%b %Y", "%Y-%m-%d")

# ===== UTILITY FUNCTIONS =====

def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(moment: datetime) -> str:
    """
    Serializes a datetime as a UTC ISO-8601 string with fixed microsecond precision,
    so stored timestamps compare correctly as plain strings.
    """
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_iso(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_release_date(raw: Optional[str]) -> Optional[str]:
    """
    Parses a storefront release date into an ISO date (YYYY-MM-DD).
    Returns None for missing or unparseable values ("Coming soon", "TBA", ...).
    """
    if not raw or not isinstance(raw, str):
        return None
    text = raw.strip()

    try:
        return datetime.fromisoformat(text.replace('Z', '+00:00')).date().isoformat()
    except ValueError:
        pass

    for fmt in _RELEASE_DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date().isoformat()
        except ValueError:
            continue

    logger.debug(f"[parse_release_date] Unrecognized release date: '{raw}'")
    return None


def to_tri_state(value: Any) -> str:
    """Maps an upstream boolean (or missing value) to 'true' / 'false' / 'unknown'."""
    if value is None:
        return TRI_UNKNOWN
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in (TRI_TRUE, TRI_FALSE):
            return lowered
        return TRI_UNKNOWN
    return TRI_TRUE if value else TRI_FALSE


def round_half_up(value: float) -> int:
    """Rounds .5 away from zero for positive values (Python's round() is banker's rounding)."""
    return int(math.floor(value + 0.5))


def sanitize_html(html_text: Optional[str]) -> str:
    """
    Removes all HTML tags from a string, returning only the clean text.
    """
    if not html_text: return ""
    if '<' not in html_text:
        return re.sub(r'\s\s+', ' ', html_text).strip()
    soup = BeautifulSoup(html_text, "lxml")
    text = soup.get_text(separator=' ', strip=True)
    text = re.sub(r'\s\s+', ' ', text)
    return text
