# ===== IMPORTS & DEPENDENCIES =====
import logging
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Any

from gamecompare.config import PLATFORMS, SYNC_ERROR_THRESHOLD
from gamecompare.core.database import Database
from gamecompare.core.errors import FatalSyncError, PartialSyncError, ValidationError
from gamecompare.models.game import (
    SyncResult, SYNC_TYPES, STATUS_COMPLETED, STATUS_FAILED, STATUS_PARTIAL,
)
from gamecompare.utils.game_utils import utc_now, to_iso, from_iso

# ===== CONFIGURATION & CONSTANTS =====
logger = logging.getLogger(__name__)

# ===== CORE BUSINESS LOGIC =====
class SyncEngine:
    """
    Pulls a batch of upstream records from one storefront and merges them into
    the canonical catalog. Every run that is not skipped leaves exactly one
    sync_log row behind, in a terminal state.
    """

    def __init__(self, db: Database, error_threshold: int = SYNC_ERROR_THRESHOLD,
                 clock: Callable[[], datetime] = utc_now):
        self.db = db
        self.error_threshold = error_threshold
        self._clock = clock

    def _is_fresh(self, platform: str, ttl_hours: float, now: datetime) -> bool:
        last = self.db.get_last_completed_sync(platform)
        if not last:
            return False
        completed_at = from_iso(last['completed_at'])
        return now - completed_at < timedelta(hours=ttl_hours)

    def _status_for(self, error_count: int) -> str:
        if error_count == 0:
            return STATUS_COMPLETED
        if error_count <= self.error_threshold:
            return STATUS_PARTIAL
        return STATUS_FAILED

    def _elapsed_ms(self, started: datetime) -> int:
        return int((self._clock() - started).total_seconds() * 1000)

    async def sync_games(self, source, force: bool = False, sync_type: str = 'manual',
                         query: Optional[str] = None) -> SyncResult:
        """
        Runs one sync for `source`. Never raises for record or transport failures;
        they are reported through the returned SyncResult.
        """
        platform = source.platform
        if sync_type not in SYNC_TYPES:
            raise ValidationError(f"Unknown sync type '{sync_type}'. Expected one of: {', '.join(SYNC_TYPES)}")
        started = self._clock()

        if not force and self._is_fresh(platform, source.cache_ttl_hours, started):
            logger.info(f"[{self.__class__.__name__}] {platform} synced within the last {source.cache_ttl_hours:g}h. Skipping.")
            return SyncResult(
                platform=platform, success=True, status=STATUS_COMPLETED, skipped=True,
                games_processed=0, games_added=0, games_updated=0, games_synced=0,
                errors=[], duration_ms=0, sync_log_id=None,
            )

        log_id = self.db.create_sync_log(platform, sync_type, to_iso(started))
        logger.info(f"🚀 [{self.__class__.__name__}] Sync #{log_id} started for {platform} ({sync_type}).")

        try:
            batch = await source.fetch_sync_batch(query)
        except Exception as e:
            failure = FatalSyncError(platform, [f"Batch fetch failed: {e}"])
            logger.error(f"❌ [{self.__class__.__name__}] {failure}: {e}")
            self.db.complete_sync_log(log_id, STATUS_FAILED, to_iso(self._clock()), errors=failure.errors)
            return SyncResult(
                platform=platform, success=False, status=STATUS_FAILED, skipped=False,
                games_processed=0, games_added=0, games_updated=0, games_synced=0,
                errors=failure.errors, duration_ms=self._elapsed_ms(started), sync_log_id=log_id,
            )

        processed = added = updated = 0
        errors: List[str] = []
        for index, raw in enumerate(batch):
            if index > 0:
                await source.throttle()
            try:
                game = await source.prepare_record(raw)
                now = to_iso(self._clock())
                _, created = self.db.save_platform_game(game, now)
                processed += 1
                if created:
                    added += 1
                else:
                    updated += 1
            except Exception as e:
                message = f"Record {index + 1}: {type(e).__name__}: {e}"
                errors.append(message)
                logger.warning(f"⚠️ [{self.__class__.__name__}] {platform} {message}")

        status = self._status_for(len(errors))
        self.db.complete_sync_log(
            log_id, status, to_iso(self._clock()), games_processed=processed,
            games_added=added, games_updated=updated, errors=errors,
        )

        if status == STATUS_COMPLETED:
            logger.info(f"✅ [{self.__class__.__name__}] {platform} sync #{log_id} completed: {processed} processed, {added} added, {updated} updated.")
        elif status == STATUS_PARTIAL:
            logger.warning(f"⚠️ [{self.__class__.__name__}] {PartialSyncError(platform, errors)} (sync #{log_id}).")
        else:
            logger.error(f"❌ [{self.__class__.__name__}] {FatalSyncError(platform, errors)} (sync #{log_id}).")

        return SyncResult(
            platform=platform, success=status != STATUS_FAILED, status=status, skipped=False,
            games_processed=processed, games_added=added, games_updated=updated, games_synced=processed,
            errors=errors, duration_ms=self._elapsed_ms(started), sync_log_id=log_id,
        )

    def get_sync_status(self) -> Dict[str, Optional[Dict[str, Any]]]:
        """The most recent run per platform, or None for a platform that never synced."""
        status = {}
        for platform in PLATFORMS:
            logs = self.db.get_sync_logs(limit=1, platform=platform)
            if not logs:
                status[platform] = None
                continue
            last = logs[0]
            status[platform] = {
                'status': last['status'],
                'started_at': last['started_at'],
                'completed_at': last['completed_at'],
                'games_processed': last['games_processed'],
                'error_count': len(last['errors']),
            }
        return status

    def get_sync_logs(self, limit: int = 20, platform: Optional[str] = None) -> List[Dict[str, Any]]:
        return self.db.get_sync_logs(limit=limit, platform=platform)
