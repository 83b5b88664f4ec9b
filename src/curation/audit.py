"""JSONL audit trail for review actions."""

from __future__ import annotations

import json
from datetime import UTC, datetime
from pathlib import Path
from typing import Dict

from src.utils.config import CurationConfig


class CurationAuditTrail:
    """Append-only JSONL log of successful review mutations."""

    def __init__(self, path: Path, *, enabled: bool = True) -> None:
        self.path = path
        self.enabled = enabled
        if self.enabled:
            self.path.parent.mkdir(parents=True, exist_ok=True)

    @classmethod
    def from_config(cls, config: CurationConfig | None = None) -> "CurationAuditTrail":
        config = config or CurationConfig()
        return cls(Path(config.audit_path), enabled=config.enable_audit_trail)

    @classmethod
    def disabled(cls) -> "CurationAuditTrail":
        return cls(Path("logs/curation_audit.jsonl"), enabled=False)

    def record(self, event: str, user_id: str, payload: Dict[str, object]) -> None:
        """Append an audit entry to disk."""
        if not self.enabled:
            return

        entry = {
            "event": event,
            "user_id": user_id,
            "payload": payload,
            "timestamp": datetime.now(UTC).isoformat(),
        }
        with self.path.open("a", encoding="utf-8") as handle:
            handle.write(json.dumps(entry, sort_keys=True, default=str) + "\n")
