"""Content-addressed cache for extraction responses.

Entries are keyed by (input hash, prompt version). Duplicate rows for one key
are allowed; reads return the first unexpired row in insertion order.
"""

from __future__ import annotations

import json
import time
from typing import Any, Callable, Optional

from loguru import logger

from src.extraction.models import ExtractionResult, parse_extraction_payload
from src.storage.canon_store import CanonStore
from src.storage.schemas import LLMCacheEntry
from src.utils.config import CacheConfig
from src.utils.errors import ExtractionParseError


def _now_ms() -> int:
    return int(time.time() * 1000)


class ExtractionCache:
    """Read/write/invalidate cached extraction responses in the canon store."""

    def __init__(
        self,
        store: CanonStore,
        config: CacheConfig | None = None,
        *,
        clock: Callable[[], int] | None = None,
    ) -> None:
        self.store = store
        self.config = config or CacheConfig()
        self._now = clock or _now_ms

    def check_cache(self, input_hash: str, prompt_version: str) -> Optional[ExtractionResult]:
        """Return the cached response, or None on miss or expiry."""
        if not self.config.enabled:
            return None

        now = self._now()
        with self.store.transaction() as txn:
            entries = txn.find_cache_entries(input_hash, prompt_version)

        entry = entries[0] if entries else None
        if entry is None or entry.is_expired(now):
            logger.debug(f"Cache miss for {input_hash[:12]} ({prompt_version})")
            return None

        try:
            result = parse_extraction_payload(json.loads(entry.response))
        except (json.JSONDecodeError, ExtractionParseError) as exc:
            logger.warning(f"Ignoring unreadable cache entry {entry.id}: {exc}")
            return None

        logger.debug(f"Cache hit for {input_hash[:12]} ({prompt_version})")
        return result

    def save_to_cache(
        self,
        input_hash: str,
        prompt_version: str,
        model_id: str,
        response: ExtractionResult | dict[str, Any],
    ) -> int:
        """Store a response; expires after the configured TTL (7 days by default)."""
        payload = response.to_payload() if isinstance(response, ExtractionResult) else response
        created_at = self._now()
        entry = LLMCacheEntry(
            input_hash=input_hash,
            prompt_version=prompt_version,
            model_id=model_id,
            response=json.dumps(payload),
            created_at=created_at,
            expires_at=created_at + self.config.ttl_ms,
        )
        with self.store.transaction() as txn:
            entry_id = txn.insert_cache_entry(entry)
        logger.debug(f"Cached extraction for {input_hash[:12]} ({prompt_version}) as {entry_id}")
        return entry_id

    def invalidate_cache(self, prompt_version: str, input_hash: str | None = None) -> int:
        """Delete every entry for a prompt version, or just the one hash within it."""
        with self.store.transaction() as txn:
            removed = txn.delete_cache_entries(prompt_version, input_hash)
        logger.info(
            f"Invalidated {removed} cache entries for prompt version {prompt_version}"
            + (f" and hash {input_hash[:12]}" if input_hash else "")
        )
        return removed

    def purge_expired(self, now_ms: int | None = None) -> int:
        """Delete entries whose expiry has passed."""
        with self.store.transaction() as txn:
            removed = txn.delete_expired_cache_entries(self._now() if now_ms is None else now_ms)
        if removed:
            logger.info(f"Purged {removed} expired cache entries")
        return removed
