# ===== IMPORTS & DEPENDENCIES =====
import os
import json
import sqlite3
import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

from gamecompare.models.game import NormalizedGame, PlatformData, STATUS_RUNNING, STATUS_COMPLETED

# ===== CONFIGURATION & CONSTANTS =====
logger = logging.getLogger(__name__)

GAME_COLUMNS = (
    "id", "name", "description", "short_description", "genres", "tags", "developer", "publisher",
    "release_date", "cover_image", "platforms", "is_multi_platform", "created_at", "updated_at",
)
OFFER_COLUMNS = (
    "id", "game_id", "platform", "platform_id", "platform_price", "original_price", "discount_percent",
    "currency", "available", "drm_free", "platform_url", "image_url", "metadata", "last_sync_date",
    "created_at", "updated_at",
)

_JOINED_SELECT = ", ".join(
    [f"g.{c} AS g_{c}" for c in GAME_COLUMNS] + [f"gp.{c} AS gp_{c}" for c in OFFER_COLUMNS]
)

_SORT_CLAUSES = {
    "price_low_to_high": "gp.platform_price IS NULL, gp.platform_price ASC, g.id, gp.id",
    "price_high_to_low": "gp.platform_price IS NULL, gp.platform_price DESC, g.id, gp.id",
    "release_date": "g.release_date IS NULL, g.release_date DESC, g.id, gp.id",
    "discount": "gp.discount_percent IS NULL, gp.discount_percent DESC, g.id, gp.id",
}


def _like(fragment: str) -> str:
    """Builds a LIKE pattern matching `fragment` anywhere, with wildcards in the input escaped."""
    return f"%{_escape_like(fragment)}%"


def _escape_like(text: str) -> str:
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str) and not value.strip():
        return None
    return value


def _decode_list(raw: Optional[str]) -> List[str]:
    if not raw:
        return []
    try:
        value = json.loads(raw)
    except (TypeError, ValueError):
        return []
    return value if isinstance(value, list) else []


def _game_from_mapping(data: Dict[str, Any]) -> Dict[str, Any]:
    game = dict(data)
    game["genres"] = _decode_list(game.get("genres"))
    game["tags"] = _decode_list(game.get("tags"))
    game["platforms"] = _decode_list(game.get("platforms"))
    game["is_multi_platform"] = bool(game.get("is_multi_platform"))
    return game


def _offer_from_mapping(data: Dict[str, Any]) -> Dict[str, Any]:
    offer = dict(data)
    raw_metadata = offer.get("metadata")
    try:
        offer["metadata"] = json.loads(raw_metadata) if raw_metadata else {}
    except (TypeError, ValueError):
        offer["metadata"] = {}
    return offer


def _split_joined_row(row: sqlite3.Row) -> Tuple[Dict[str, Any], Optional[Dict[str, Any]]]:
    game = _game_from_mapping({c: row[f"g_{c}"] for c in GAME_COLUMNS})
    if row["gp_id"] is None:
        return game, None
    return game, _offer_from_mapping({c: row[f"gp_{c}"] for c in OFFER_COLUMNS})


# ===== CORE BUSINESS LOGIC =====
class Database:
    """
    Persistence for the canonical catalog: games, their per-storefront offers,
    price history, sync runs, cached comparisons and search popularity.
    """

    def __init__(self, db_path: str):
        self.db_path = db_path
        directory = os.path.dirname(db_path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        self._create_tables()
        logger.info(f"[{self.__class__.__name__}] Database initialized at: {self.db_path}")

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        """Yields a connection that commits on success, rolls back on error and is always closed."""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    def _create_tables(self):
        """Creates required tables if they don't exist."""
        with self._get_connection() as conn:
            conn.executescript("""
                CREATE TABLE IF NOT EXISTS games (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT UNIQUE NOT NULL,
                    description TEXT,
                    short_description TEXT,
                    genres TEXT,
                    tags TEXT,
                    developer TEXT,
                    publisher TEXT,
                    release_date TEXT,
                    cover_image TEXT,
                    platforms TEXT,
                    is_multi_platform INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS game_platforms (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    game_id INTEGER NOT NULL REFERENCES games(id) ON DELETE CASCADE,
                    platform TEXT NOT NULL CHECK (platform IN ('steam', 'epic', 'gog')),
                    platform_id TEXT NOT NULL,
                    platform_price REAL,
                    original_price REAL,
                    discount_percent INTEGER NOT NULL DEFAULT 0,
                    currency TEXT NOT NULL DEFAULT 'USD',
                    available TEXT NOT NULL DEFAULT 'unknown',
                    drm_free TEXT NOT NULL DEFAULT 'unknown',
                    platform_url TEXT,
                    image_url TEXT,
                    metadata TEXT,
                    last_sync_date TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    UNIQUE (game_id, platform),
                    UNIQUE (platform, platform_id)
                );
                CREATE INDEX IF NOT EXISTS idx_game_platforms_updated ON game_platforms (updated_at);

                CREATE TABLE IF NOT EXISTS price_history (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    offer_id INTEGER NOT NULL REFERENCES game_platforms(id) ON DELETE CASCADE,
                    game_id INTEGER NOT NULL,
                    platform TEXT NOT NULL,
                    price REAL,
                    original_price REAL,
                    discount_percent INTEGER NOT NULL DEFAULT 0,
                    currency TEXT NOT NULL DEFAULT 'USD',
                    recorded_at TEXT NOT NULL
                );
                CREATE INDEX IF NOT EXISTS idx_price_history_offer ON price_history (offer_id, recorded_at);

                CREATE TABLE IF NOT EXISTS sync_log (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    platform TEXT NOT NULL,
                    sync_type TEXT NOT NULL,
                    status TEXT NOT NULL,
                    started_at TEXT NOT NULL,
                    completed_at TEXT,
                    games_processed INTEGER NOT NULL DEFAULT 0,
                    games_added INTEGER NOT NULL DEFAULT 0,
                    games_updated INTEGER NOT NULL DEFAULT 0,
                    error_message TEXT,
                    errors TEXT
                );

                CREATE TABLE IF NOT EXISTS comparison_cache (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    game_id INTEGER UNIQUE NOT NULL REFERENCES games(id) ON DELETE CASCADE,
                    comparison_data TEXT NOT NULL,
                    last_updated TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS popular_searches (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    query TEXT UNIQUE NOT NULL,
                    search_count INTEGER NOT NULL DEFAULT 1,
                    last_searched TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS tracked_games (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id INTEGER NOT NULL,
                    game_id INTEGER NOT NULL REFERENCES games(id) ON DELETE CASCADE,
                    target_price REAL NOT NULL,
                    created_at TEXT NOT NULL,
                    UNIQUE (user_id, game_id)
                );

                CREATE TABLE IF NOT EXISTS user_library (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id INTEGER NOT NULL,
                    game_id INTEGER NOT NULL REFERENCES games(id) ON DELETE CASCADE,
                    added_at TEXT NOT NULL,
                    UNIQUE (user_id, game_id)
                );
            """)
            logger.info(f"[{self.__class__.__name__}] Database tables verified/created.")

    # --- Games ---

    def get_game(self, game_id: int) -> Optional[Dict[str, Any]]:
        with self._get_connection() as conn:
            row = conn.execute("SELECT * FROM games WHERE id = ?", (game_id,)).fetchone()
            return _game_from_mapping(dict(row)) if row else None

    def find_game_by_name(self, name: str) -> Optional[Dict[str, Any]]:
        """Exact, case-sensitive name lookup."""
        with self._get_connection() as conn:
            row = conn.execute("SELECT * FROM games WHERE name = ?", (name,)).fetchone()
            return _game_from_mapping(dict(row)) if row else None

    def find_or_create_game(self, game: NormalizedGame, now: str) -> Tuple[int, bool]:
        """
        Returns (game_id, created) for the game named exactly `game['name']`.

        The insert is a single conflict-aware statement on the unique name, so two
        concurrent writers converge on one row. When the game already exists its
        stored nulls are filled from the incoming record and genre/tag sets are merged.
        """
        with self._get_connection() as conn:
            return self._find_or_create_game(conn, game, now)

    def _find_or_create_game(self, conn: sqlite3.Connection, game: NormalizedGame, now: str) -> Tuple[int, bool]:
        name = game["name"]
        genres = sorted(set(game.get("genres") or []))
        tags = sorted(set(game.get("tags") or []))
        fields = (
            _blank_to_none(game.get("description")),
            _blank_to_none(game.get("short_description")),
            _blank_to_none(game.get("developer")),
            _blank_to_none(game.get("publisher")),
            game.get("release_date"),
            _blank_to_none(game.get("cover_image")),
        )

        cursor = conn.execute(
            """
            INSERT INTO games (name, description, short_description, developer, publisher, release_date,
                               cover_image, genres, tags, platforms, is_multi_platform, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, '[]', 0, ?, ?)
            ON CONFLICT(name) DO NOTHING
            """,
            (name, *fields, json.dumps(genres), json.dumps(tags), now, now),
        )
        created = cursor.rowcount == 1
        row = conn.execute("SELECT * FROM games WHERE name = ?", (name,)).fetchone()
        game_id = row["id"]

        if not created:
            merged_genres = sorted(set(_decode_list(row["genres"])) | set(genres))
            merged_tags = sorted(set(_decode_list(row["tags"])) | set(tags))
            conn.execute(
                """
                UPDATE games SET
                    description = COALESCE(description, ?),
                    short_description = COALESCE(short_description, ?),
                    developer = COALESCE(developer, ?),
                    publisher = COALESCE(publisher, ?),
                    release_date = COALESCE(release_date, ?),
                    cover_image = COALESCE(cover_image, ?),
                    genres = ?,
                    tags = ?,
                    updated_at = ?
                WHERE id = ?
                """,
                (*fields, json.dumps(merged_genres), json.dumps(merged_tags), now, game_id),
            )
        else:
            logger.info(f"[{self.__class__.__name__}] Created game #{game_id}: '{name}'")
        return game_id, created

    def save_platform_game(self, game: NormalizedGame, now: str) -> Tuple[int, bool]:
        """
        Stores one normalized storefront record in a single transaction: the
        canonical game, its offer and the platform sets of every game touched.
        Returns (game_id, created). A failure rolls back the whole record.

        A store id that reappears under a new name follows the record. When the
        offer was its game's only one, the game is renamed in place; otherwise
        the offer moves to the game carrying the new name.
        """
        data = game["platform_data"]
        with self._get_connection() as conn:
            self._rename_single_store_game(conn, game["name"], data, now)
            game_id, created = self._find_or_create_game(conn, game, now)
            _, _, previous_game_id = self._upsert_offer(conn, game_id, data, now)
            self._refresh_game_platforms(conn, game_id, now)
            if previous_game_id is not None:
                self._refresh_game_platforms(conn, previous_game_id, now)
            return game_id, created

    def _rename_single_store_game(self, conn: sqlite3.Connection, name: str, data: PlatformData, now: str) -> None:
        if conn.execute("SELECT 1 FROM games WHERE name = ?", (name,)).fetchone():
            return
        owner = conn.execute(
            "SELECT game_id FROM game_platforms WHERE platform = ? AND platform_id = ?",
            (data["platform"], str(data["platform_id"])),
        ).fetchone()
        if not owner:
            return
        other_offers = conn.execute(
            "SELECT COUNT(*) FROM game_platforms WHERE game_id = ? AND platform != ?",
            (owner["game_id"], data["platform"]),
        ).fetchone()[0]
        if other_offers == 0:
            conn.execute("UPDATE games SET name = ?, updated_at = ? WHERE id = ?", (name, now, owner["game_id"]))
            logger.info(f"[{self.__class__.__name__}] Renamed game #{owner['game_id']} to '{name}' after a store rename.")

    def refresh_game_platforms(self, game_id: int, now: str) -> List[str]:
        """Recomputes the game's platform set and multi-platform flag from its offers."""
        with self._get_connection() as conn:
            return self._refresh_game_platforms(conn, game_id, now)

    def _refresh_game_platforms(self, conn: sqlite3.Connection, game_id: int, now: str) -> List[str]:
        rows = conn.execute(
            "SELECT DISTINCT platform FROM game_platforms WHERE game_id = ? ORDER BY platform", (game_id,)
        ).fetchall()
        platforms = [row["platform"] for row in rows]
        conn.execute(
            "UPDATE games SET platforms = ?, is_multi_platform = ?, updated_at = ? WHERE id = ?",
            (json.dumps(platforms), 1 if len(platforms) > 1 else 0, now, game_id),
        )
        return platforms

    def delete_game(self, game_id: int) -> bool:
        """Deletes a game; offers, price history, cached comparisons and tracking rows cascade."""
        with self._get_connection() as conn:
            cursor = conn.execute("DELETE FROM games WHERE id = ?", (game_id,))
            if cursor.rowcount > 0:
                logger.info(f"[{self.__class__.__name__}] Deleted game #{game_id} and its dependent rows.")
                return True
            logger.warning(f"[{self.__class__.__name__}] No game found to delete with id={game_id}")
            return False

    def find_games(self, text: Optional[str] = None, genres: Optional[Sequence[str]] = None,
                   limit: int = 50, offset: int = 0) -> List[Dict[str, Any]]:
        """Substring match on name or description, optionally narrowed to any of `genres`."""
        clauses, params = [], []
        if text:
            clauses.append("(name LIKE ? ESCAPE '\\' OR description LIKE ? ESCAPE '\\')")
            params.extend([_like(text), _like(text)])
        if genres:
            clauses.append("(" + " OR ".join("genres LIKE ? ESCAPE '\\'" for _ in genres) + ")")
            params.extend(_like(genre) for genre in genres)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        with self._get_connection() as conn:
            rows = conn.execute(
                f"SELECT * FROM games {where} ORDER BY id LIMIT ? OFFSET ?", (*params, limit, offset)
            ).fetchall()
            return [_game_from_mapping(dict(row)) for row in rows]

    def find_game_names(self, fragment: str, limit: int) -> List[str]:
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT name FROM games WHERE name LIKE ? ESCAPE '\\' ORDER BY id LIMIT ?", (_like(fragment), limit)
            ).fetchall()
            return [row["name"] for row in rows]

    def count_games(self) -> int:
        with self._get_connection() as conn:
            return conn.execute("SELECT COUNT(*) FROM games").fetchone()[0]

    # --- Offers ---

    def get_offer(self, game_id: int, platform: str) -> Optional[Dict[str, Any]]:
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM game_platforms WHERE game_id = ? AND platform = ?", (game_id, platform)
            ).fetchone()
            return _offer_from_mapping(dict(row)) if row else None

    def get_offers(self, game_id: int) -> List[Dict[str, Any]]:
        with self._get_connection() as conn:
            rows = conn.execute("SELECT * FROM game_platforms WHERE game_id = ? ORDER BY id", (game_id,)).fetchall()
            return [_offer_from_mapping(dict(row)) for row in rows]

    def upsert_offer(self, game_id: int, data: PlatformData, now: str) -> Tuple[int, bool]:
        """
        Inserts or updates the offer for (game_id, platform) in one transaction.
        An offer already holding the same store id under another game is moved here.
        Returns (offer_id, created).
        """
        with self._get_connection() as conn:
            offer_id, created, previous_game_id = self._upsert_offer(conn, game_id, data, now)
            if previous_game_id is not None:
                self._refresh_game_platforms(conn, previous_game_id, now)
            return offer_id, created

    def _upsert_offer(self, conn: sqlite3.Connection, game_id: int, data: PlatformData,
                      now: str) -> Tuple[int, bool, Optional[int]]:
        platform = data["platform"]
        platform_id = str(data["platform_id"])
        previous_game_id = self._claim_store_id(conn, game_id, platform, platform_id)
        existing = conn.execute(
            "SELECT id FROM game_platforms WHERE game_id = ? AND platform = ?", (game_id, platform)
        ).fetchone()
        conn.execute(
            """
            INSERT INTO game_platforms (game_id, platform, platform_id, platform_price, original_price,
                                        discount_percent, currency, available, drm_free, platform_url,
                                        image_url, metadata, last_sync_date, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(game_id, platform) DO UPDATE SET
                platform_id = excluded.platform_id,
                platform_price = excluded.platform_price,
                original_price = excluded.original_price,
                discount_percent = excluded.discount_percent,
                currency = excluded.currency,
                available = excluded.available,
                drm_free = excluded.drm_free,
                platform_url = COALESCE(excluded.platform_url, game_platforms.platform_url),
                image_url = COALESCE(excluded.image_url, game_platforms.image_url),
                metadata = excluded.metadata,
                last_sync_date = excluded.last_sync_date,
                updated_at = excluded.updated_at
            """,
            (
                game_id, platform, platform_id, data.get("price"), data.get("original_price"),
                int(data.get("discount_percent") or 0), data.get("currency") or "USD",
                data.get("available") or "unknown", data.get("drm_free") or "unknown",
                data.get("url"), data.get("image_url"), json.dumps(data.get("metadata") or {}),
                now, now, now,
            ),
        )
        row = conn.execute(
            "SELECT id FROM game_platforms WHERE game_id = ? AND platform = ?", (game_id, platform)
        ).fetchone()
        return row["id"], existing is None, previous_game_id

    def _claim_store_id(self, conn: sqlite3.Connection, game_id: int, platform: str,
                        platform_id: str) -> Optional[int]:
        """
        Moves the offer holding (platform, platform_id) under `game_id`, replacing
        any other offer the game has on that platform. Returns the game it left, if any.
        """
        owner = conn.execute(
            "SELECT id, game_id FROM game_platforms WHERE platform = ? AND platform_id = ?", (platform, platform_id)
        ).fetchone()
        if not owner or owner["game_id"] == game_id:
            return None
        previous_game_id = owner["game_id"]
        conn.execute(
            "DELETE FROM game_platforms WHERE game_id = ? AND platform = ? AND id != ?",
            (game_id, platform, owner["id"]),
        )
        conn.execute("UPDATE game_platforms SET game_id = ? WHERE id = ?", (game_id, owner["id"]))
        conn.execute("UPDATE price_history SET game_id = ? WHERE offer_id = ?", (game_id, owner["id"]))
        conn.execute("DELETE FROM comparison_cache WHERE game_id IN (?, ?)", (game_id, previous_game_id))
        logger.info(
            f"[{self.__class__.__name__}] Moved {platform} offer '{platform_id}' from game #{previous_game_id} to #{game_id}."
        )
        return previous_game_id

    def count_offers(self) -> int:
        with self._get_connection() as conn:
            return conn.execute("SELECT COUNT(*) FROM game_platforms").fetchone()[0]

    def search_game_offers(
        self,
        text: str,
        platforms: Optional[Sequence[str]] = None,
        min_price: Optional[float] = None,
        max_price: Optional[float] = None,
        genres: Optional[Sequence[str]] = None,
        release_from: Optional[str] = None,
        release_to: Optional[str] = None,
        on_sale: bool = False,
        tags: Optional[Sequence[str]] = None,
        sort: str = "relevance",
        limit: int = 20,
        offset: int = 0,
    ) -> List[Tuple[Dict[str, Any], Optional[Dict[str, Any]]]]:
        """
        Joined game/offer rows for the advanced search. Filter categories are ANDed,
        list-valued filters are ORed internally. Matching is case-insensitive.
        """
        pattern = _like(text)
        clauses = [
            "(g.name LIKE ? ESCAPE '\\' OR g.description LIKE ? ESCAPE '\\' OR g.developer LIKE ? ESCAPE '\\')"
        ]
        params: List[Any] = [pattern, pattern, pattern]

        if platforms:
            clauses.append(f"gp.platform IN ({', '.join('?' for _ in platforms)})")
            params.extend(platforms)
        if min_price is not None:
            clauses.append("gp.platform_price >= ?")
            params.append(min_price)
        if max_price is not None:
            clauses.append("gp.platform_price <= ?")
            params.append(max_price)
        if genres:
            clauses.append("(" + " OR ".join("g.genres LIKE ? ESCAPE '\\'" for _ in genres) + ")")
            params.extend(_like(genre) for genre in genres)
        if release_from:
            clauses.append("g.release_date >= ?")
            params.append(release_from)
        if release_to:
            clauses.append("g.release_date <= ?")
            params.append(release_to)
        if on_sale:
            clauses.append("gp.discount_percent > 0")
        if tags:
            clauses.append("(" + " OR ".join("g.tags LIKE ? ESCAPE '\\'" for _ in tags) + ")")
            params.extend(_like(tag) for tag in tags)

        if sort in _SORT_CLAUSES:
            order_by = _SORT_CLAUSES[sort]
        else:
            # Relevance: case-insensitive exact name matches first, then insertion order.
            order_by = "CASE WHEN g.name LIKE ? ESCAPE '\\' THEN 0 ELSE 1 END, g.id, gp.id"
            params.append(_escape_like(text))

        sql = (
            f"SELECT {_JOINED_SELECT} FROM games g LEFT JOIN game_platforms gp ON gp.game_id = g.id "
            f"WHERE {' AND '.join(clauses)} ORDER BY {order_by} LIMIT ? OFFSET ?"
        )
        with self._get_connection() as conn:
            rows = conn.execute(sql, (*params, limit, offset)).fetchall()
            return [_split_joined_row(row) for row in rows]

    def find_game_offer_rows_by_name(self, fragment: str, limit: int,
                                     platforms: Optional[Sequence[str]] = None
                                     ) -> List[Tuple[Dict[str, Any], Optional[Dict[str, Any]]]]:
        clauses, params = ["g.name LIKE ? ESCAPE '\\'"], [_like(fragment)]
        if platforms:
            clauses.append(f"gp.platform IN ({', '.join('?' for _ in platforms)})")
            params.extend(platforms)
        sql = (
            f"SELECT {_JOINED_SELECT} FROM games g LEFT JOIN game_platforms gp ON gp.game_id = g.id "
            f"WHERE {' AND '.join(clauses)} ORDER BY g.id, gp.id LIMIT ?"
        )
        with self._get_connection() as conn:
            return [_split_joined_row(row) for row in conn.execute(sql, (*params, limit)).fetchall()]

    def get_recently_updated_offer_rows(self, since: str, limit: int,
                                        platforms: Optional[Sequence[str]] = None
                                        ) -> List[Tuple[Dict[str, Any], Optional[Dict[str, Any]]]]:
        clauses, params = ["gp.updated_at >= ?"], [since]
        if platforms:
            clauses.append(f"gp.platform IN ({', '.join('?' for _ in platforms)})")
            params.extend(platforms)
        sql = (
            f"SELECT {_JOINED_SELECT} FROM games g JOIN game_platforms gp ON gp.game_id = g.id "
            f"WHERE {' AND '.join(clauses)} ORDER BY gp.updated_at DESC, gp.id DESC LIMIT ?"
        )
        with self._get_connection() as conn:
            return [_split_joined_row(row) for row in conn.execute(sql, (*params, limit)).fetchall()]

    # --- Price history ---

    def append_price_history(self, offer: Dict[str, Any], recorded_at: str) -> int:
        """Appends an immutable price snapshot for `offer`."""
        with self._get_connection() as conn:
            cursor = conn.execute(
                """
                INSERT INTO price_history (offer_id, game_id, platform, price, original_price,
                                           discount_percent, currency, recorded_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    offer["id"], offer["game_id"], offer["platform"], offer.get("platform_price"),
                    offer.get("original_price"), offer.get("discount_percent") or 0,
                    offer.get("currency") or "USD", recorded_at,
                ),
            )
            return cursor.lastrowid

    def get_latest_price_snapshot(self, offer_id: int) -> Optional[Dict[str, Any]]:
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM price_history WHERE offer_id = ? ORDER BY recorded_at DESC, id DESC LIMIT 1",
                (offer_id,),
            ).fetchone()
            return dict(row) if row else None

    def get_price_history(self, game_id: int, platform: Optional[str] = None) -> List[Dict[str, Any]]:
        """Price snapshots for a game, newest first."""
        sql = "SELECT * FROM price_history WHERE game_id = ?"
        params: List[Any] = [game_id]
        if platform:
            sql += " AND platform = ?"
            params.append(platform)
        sql += " ORDER BY recorded_at DESC, id DESC"
        with self._get_connection() as conn:
            return [dict(row) for row in conn.execute(sql, params).fetchall()]

    # --- Sync log ---

    def create_sync_log(self, platform: str, sync_type: str, started_at: str, status: str = STATUS_RUNNING) -> int:
        with self._get_connection() as conn:
            cursor = conn.execute(
                "INSERT INTO sync_log (platform, sync_type, status, started_at) VALUES (?, ?, ?, ?)",
                (platform, sync_type, status, started_at),
            )
            return cursor.lastrowid

    def complete_sync_log(self, log_id: int, status: str, completed_at: str, games_processed: int = 0,
                          games_added: int = 0, games_updated: int = 0,
                          errors: Optional[Sequence[str]] = None) -> None:
        """Moves a sync run to its terminal state."""
        errors = list(errors or [])
        with self._get_connection() as conn:
            conn.execute(
                """
                UPDATE sync_log SET status = ?, completed_at = ?, games_processed = ?, games_added = ?,
                                    games_updated = ?, error_message = ?, errors = ?
                WHERE id = ?
                """,
                (
                    status, completed_at, games_processed, games_added, games_updated,
                    errors[0] if errors else None, json.dumps(errors), log_id,
                ),
            )

    def get_sync_log(self, log_id: int) -> Optional[Dict[str, Any]]:
        with self._get_connection() as conn:
            row = conn.execute("SELECT * FROM sync_log WHERE id = ?", (log_id,)).fetchone()
            return self._sync_log_from_row(row) if row else None

    def get_last_completed_sync(self, platform: str) -> Optional[Dict[str, Any]]:
        with self._get_connection() as conn:
            row = conn.execute(
                """
                SELECT * FROM sync_log WHERE platform = ? AND status = ? AND completed_at IS NOT NULL
                ORDER BY completed_at DESC LIMIT 1
                """,
                (platform, STATUS_COMPLETED),
            ).fetchone()
            return self._sync_log_from_row(row) if row else None

    def get_sync_logs(self, limit: int = 20, platform: Optional[str] = None) -> List[Dict[str, Any]]:
        sql = "SELECT * FROM sync_log"
        params: List[Any] = []
        if platform:
            sql += " WHERE platform = ?"
            params.append(platform)
        sql += " ORDER BY started_at DESC, id DESC LIMIT ?"
        params.append(limit)
        with self._get_connection() as conn:
            return [self._sync_log_from_row(row) for row in conn.execute(sql, params).fetchall()]

    @staticmethod
    def _sync_log_from_row(row: sqlite3.Row) -> Dict[str, Any]:
        log = dict(row)
        log["errors"] = _decode_list(log.get("errors"))
        return log

    # --- Comparison cache ---

    def get_comparison_cache(self, game_id: int) -> Optional[Dict[str, Any]]:
        with self._get_connection() as conn:
            row = conn.execute("SELECT * FROM comparison_cache WHERE game_id = ?", (game_id,)).fetchone()
            return dict(row) if row else None

    def upsert_comparison_cache(self, game_id: int, comparison_data: str, last_updated: str) -> None:
        with self._get_connection() as conn:
            conn.execute(
                """
                INSERT INTO comparison_cache (game_id, comparison_data, last_updated) VALUES (?, ?, ?)
                ON CONFLICT(game_id) DO UPDATE SET
                    comparison_data = excluded.comparison_data,
                    last_updated = excluded.last_updated
                """,
                (game_id, comparison_data, last_updated),
            )

    # --- Popular searches ---

    def record_search(self, query: str, searched_at: str) -> None:
        """Increments the counter for `query`, creating it on first use."""
        with self._get_connection() as conn:
            conn.execute(
                """
                INSERT INTO popular_searches (query, search_count, last_searched) VALUES (?, 1, ?)
                ON CONFLICT(query) DO UPDATE SET
                    search_count = popular_searches.search_count + 1,
                    last_searched = excluded.last_searched
                """,
                (query, searched_at),
            )

    def get_popular_search(self, query: str) -> Optional[Dict[str, Any]]:
        with self._get_connection() as conn:
            row = conn.execute("SELECT * FROM popular_searches WHERE query = ?", (query,)).fetchone()
            return dict(row) if row else None

    def get_trending_searches(self, since: str, limit: int) -> List[Dict[str, Any]]:
        with self._get_connection() as conn:
            rows = conn.execute(
                """
                SELECT * FROM popular_searches WHERE last_searched >= ?
                ORDER BY search_count DESC, last_searched DESC LIMIT ?
                """,
                (since, limit),
            ).fetchall()
            return [dict(row) for row in rows]

    def find_popular_searches(self, fragment: str, limit: int) -> List[str]:
        with self._get_connection() as conn:
            rows = conn.execute(
                """
                SELECT query FROM popular_searches WHERE query LIKE ? ESCAPE '\\'
                ORDER BY search_count DESC, id LIMIT ?
                """,
                (_like(fragment), limit),
            ).fetchall()
            return [row["query"] for row in rows]

    # --- Tracking & library ---

    def track_game(self, user_id: int, game_id: int, target_price: float, now: str) -> None:
        with self._get_connection() as conn:
            conn.execute(
                """
                INSERT INTO tracked_games (user_id, game_id, target_price, created_at) VALUES (?, ?, ?, ?)
                ON CONFLICT(user_id, game_id) DO UPDATE SET target_price = excluded.target_price
                """,
                (user_id, game_id, target_price, now),
            )
            logger.info(f"[{self.__class__.__name__}] User {user_id} tracks game #{game_id} at target {target_price}")

    def untrack_game(self, user_id: int, game_id: int) -> bool:
        with self._get_connection() as conn:
            cursor = conn.execute("DELETE FROM tracked_games WHERE user_id = ? AND game_id = ?", (user_id, game_id))
            return cursor.rowcount > 0

    def get_tracked_games(self, user_id: int) -> List[Dict[str, Any]]:
        with self._get_connection() as conn:
            rows = conn.execute(
                """
                SELECT t.game_id, t.target_price, t.created_at, g.name
                FROM tracked_games t JOIN games g ON g.id = t.game_id
                WHERE t.user_id = ? ORDER BY t.created_at DESC
                """,
                (user_id,),
            ).fetchall()
            return [dict(row) for row in rows]

    def add_to_library(self, user_id: int, game_id: int, now: str) -> None:
        with self._get_connection() as conn:
            conn.execute(
                "INSERT OR IGNORE INTO user_library (user_id, game_id, added_at) VALUES (?, ?, ?)",
                (user_id, game_id, now),
            )

    def remove_from_library(self, user_id: int, game_id: int) -> bool:
        with self._get_connection() as conn:
            cursor = conn.execute("DELETE FROM user_library WHERE user_id = ? AND game_id = ?", (user_id, game_id))
            return cursor.rowcount > 0

    def get_library(self, user_id: int) -> List[Dict[str, Any]]:
        with self._get_connection() as conn:
            rows = conn.execute(
                """
                SELECT l.game_id, l.added_at, g.name, g.cover_image
                FROM user_library l JOIN games g ON g.id = l.game_id
                WHERE l.user_id = ? ORDER BY l.added_at DESC
                """,
                (user_id,),
            ).fetchall()
            return [dict(row) for row in rows]
