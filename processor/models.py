"""Data models for calendar-to-sheet synchronization."""
from dataclasses import dataclass
from datetime import datetime
from typing import Any, List, Optional, Sequence, Tuple


@dataclass(frozen=True)
class SourceRecord:
    """Calendar event as returned by a source provider."""
    record_id: str
    title: str
    start: datetime
    end: datetime
    description: Optional[str] = None
    location: Optional[str] = None
    participants: Optional[Sequence[str]] = None


@dataclass(frozen=True)
class SyncWindow:
    """Time interval scoping one reconcile pass."""
    start: datetime
    end: datetime

    def contains(self, instant: datetime) -> bool:
        return self.start <= instant <= self.end


@dataclass(frozen=True)
class IndexedRow:
    """Existing sheet row keyed by record id."""
    row_position: int
    values: List[Any]


@dataclass(frozen=True)
class ReconcilePlan:
    """Writes computed for one reconcile pass, applied after the diff is complete."""
    inserts: Tuple[List[Any], ...] = ()
    updates: Tuple[Tuple[int, List[Any]], ...] = ()
    deletes: Tuple[int, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not (self.inserts or self.updates or self.deletes)


@dataclass
class SyncResult:
    """Result of sync operation."""
    added: int
    updated: int
    deleted: int


@dataclass
class SyncOutcome:
    """Outcome of driving one sync configuration."""
    status: str
    source_id: Optional[str]
    windows: int = 0
    checkpoint: Optional[datetime] = None
    added: int = 0
    updated: int = 0
    deleted: int = 0
    reason: Optional[str] = None

    APPLIED = 'applied'
    PARTIAL = 'partial'
    SKIPPED = 'skipped'
    FAILED = 'failed'

    def absorb(self, result: SyncResult) -> None:
        """Add the counts of one reconcile pass to the running totals."""
        self.added += result.added
        self.updated += result.updated
        self.deleted += result.deleted

    def to_dict(self) -> dict:
        return {
            'status': self.status,
            'source_id': self.source_id,
            'windows': self.windows,
            'checkpoint': self.checkpoint.isoformat() if self.checkpoint else None,
            'added': self.added,
            'updated': self.updated,
            'deleted': self.deleted,
            'reason': self.reason
        }
