"""
Process-wide scan state, keyed by identity ID.
"""
import logging
import time
from collections import OrderedDict
from dataclasses import replace
from typing import Callable, Optional

from core.entities import ScanRecord

logger = logging.getLogger(__name__)


class ScanStateStore:
    """
    Holds the latest ScanRecord per identity ID.

    Finished records are evicted once older than ``max_age_seconds`` or when
    the store grows past ``max_entries`` (oldest first). Records of scans
    still in progress are never evicted.
    """

    def __init__(
        self,
        max_entries: int = 10000,
        max_age_seconds: float = 24 * 3600.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_entries = max_entries
        self.max_age_seconds = max_age_seconds
        self._clock = clock
        self._records: "OrderedDict[int, ScanRecord]" = OrderedDict()

    def get(self, identity_id: int) -> Optional[ScanRecord]:
        return self._records.get(identity_id)

    def put(self, record: ScanRecord) -> ScanRecord:
        """Replace the record for its identity, stamping the update time."""
        record = replace(record, updated_at=self._clock())
        self._records[record.identity_id] = record
        self._records.move_to_end(record.identity_id)
        self.evict()
        return record

    def evict(self) -> int:
        """Drop expired and overflow finished records. Returns how many were removed."""
        now = self._clock()
        to_remove = [
            identity_id
            for identity_id, record in self._records.items()
            if record.completed and now - record.updated_at > self.max_age_seconds
        ]

        overflow = len(self._records) - len(to_remove) - self.max_entries
        if overflow > 0:
            for identity_id, record in self._records.items():
                if overflow <= 0:
                    break
                if record.completed and identity_id not in to_remove:
                    to_remove.append(identity_id)
                    overflow -= 1

        for identity_id in to_remove:
            del self._records[identity_id]

        if to_remove:
            logger.debug(f"Evicted {len(to_remove)} scan records")
        return len(to_remove)

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, identity_id: int) -> bool:
        return identity_id in self._records
