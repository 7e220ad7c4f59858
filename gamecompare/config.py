# ===== CONFIGURATION & CONSTANTS =====
import os

# --- General Settings ---
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
DATABASE_PATH = os.getenv("DATABASE_PATH", "data/games.db")
COUNTRY_CODE = os.getenv("GAMECOMPARE_COUNTRY", "US")
LOCALE = "en-US"

# --- Platforms ---
PLATFORMS = ("steam", "epic", "gog")
PLATFORM_DISPLAY_NAMES = {
    "steam": "Steam",
    "epic": "Epic Games Store",
    "gog": "GOG",
}

# --- HTTP & Retry ---
COMMON_HEADERS = {
    'User-Agent': 'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/126.0.0.0 Safari/537.36',
    'Accept-Language': 'en-US,en;q=0.9',
    'Accept': 'application/json, text/plain, */*',
    'Content-Type': 'application/json',
}
REQUEST_TIMEOUT = 25  # seconds
MAX_RETRIES = 3
RETRY_BASE_DELAY = 1.0  # seconds, doubled after every failed attempt

# --- Caching (seconds) ---
STEAM_CACHE_TTL = 12 * 60 * 60  # Steam data changes slowly
EPIC_CACHE_TTL = 8 * 60 * 60
GOG_CACHE_TTL = 8 * 60 * 60
COMPARISON_CACHE_TTL = 6 * 60 * 60

# --- Sync ---
RATE_LIMIT_DELAY = float(os.getenv("RATE_LIMIT_DELAY", "1.0"))  # seconds between records in a sync batch
SYNC_BATCH_SIZE = 50
SYNC_ERROR_THRESHOLD = 5  # more per-record errors than this fail the run

# --- Search ---
DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100
MAX_QUERY_LENGTH = 500
LIVE_SEARCH_THRESHOLD = 10  # fewer local hits than this triggers a live storefront search
LIVE_RESULTS_PER_PLATFORM = 5
TRENDING_TIMEFRAMES = {"week": 7, "month": 30}

# --- Steam ---
STEAM_APP_LIST_URL = "https://api.steampowered.com/ISteamApps/GetAppList/v2/"
STEAM_APP_DETAILS_URL = "https://store.steampowered.com/api/appdetails"
STEAM_STORE_URL = "https://store.steampowered.com/app/{app_id}"
STEAM_HEADER_IMAGE_URL = "https://steamcdn-a.akamaihd.net/steam/apps/{app_id}/header.jpg"

# --- Epic Games ---
EPIC_GAMES_API_URL = "https://store.epicgames.com/graphql"
EPIC_STORE_URL = "https://store.epicgames.com/en-US/p/{slug}"
EPIC_GAMES_HEADERS = {**COMMON_HEADERS, 'Referer': 'https://store.epicgames.com/', 'Origin': 'https://store.epicgames.com'}

# --- GOG ---
GOG_CATALOG_URL = "https://api.gog.com/v2/catalog"
GOG_GAME_URL = "https://api.gog.com/v2/games/{game_id}"
GOG_STORE_URL = "https://www.gog.com/game/{slug}"
