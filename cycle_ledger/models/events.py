"""
Change Event Models for Cycle Ledger

Every committed mutation of the record store produces one ChangeEvent.
Events are delivered to observers through the change notifier and logged
by the audit logger.

An event touches one or more scopes:
- ``"cycles"`` when the full cycle list changed
- ``"cycle:<id>"`` when a cycle's meta, transactions or sum changed
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field


CYCLES_SCOPE = "cycles"


def cycle_scope(cycle_id: int) -> str:
    """Scope key for everything that belongs to one cycle."""
    return f"cycle:{cycle_id}"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ChangeKind(str, Enum):
    """Types of change the store reports."""
    # Cycles
    CYCLE_CREATED = "cycle_created"
    CYCLE_UPDATED = "cycle_updated"
    CYCLE_DELETED = "cycle_deleted"

    # Transactions
    TRANSACTION_CREATED = "transaction_created"
    TRANSACTION_UPDATED = "transaction_updated"
    TRANSACTION_DELETED = "transaction_deleted"

    # Synthetic event handed to a new subscriber
    SNAPSHOT = "snapshot"


class ChangeEvent(BaseModel):
    """
    A single committed change.

    ``cycle_ids`` lists every cycle whose ledger is affected. A transaction
    moved to another cycle affects both.
    """
    model_config = ConfigDict(frozen=True)

    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=_utcnow,
        description="When the change was committed (UTC)"
    )
    kind: ChangeKind = Field(
        ...,
        description="Type of change"
    )
    record_id: Optional[int] = Field(
        default=None,
        description="ID of the cycle or transaction that changed"
    )
    cycle_ids: tuple[int, ...] = Field(
        default=(),
        description="Cycles whose ledgers are affected"
    )
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    @property
    def touches_cycle_list(self) -> bool:
        return self.kind in (
            ChangeKind.CYCLE_CREATED,
            ChangeKind.CYCLE_UPDATED,
            ChangeKind.CYCLE_DELETED,
        )

    def scopes(self) -> list[str]:
        """Scope keys this event must be delivered to."""
        scopes = [CYCLES_SCOPE] if self.touches_cycle_list else []
        scopes.extend(cycle_scope(cycle_id) for cycle_id in self.cycle_ids)
        return scopes

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "kind": self.kind.value,
            "record_id": self.record_id,
            "cycle_ids": list(self.cycle_ids),
            "details": self.details,
        }


class ChangeEventBuilder:
    """
    Helper class to build change events with common patterns.

    Usage:
        event = ChangeEventBuilder.cycle_created(cycle_id, year, month)
        event = ChangeEventBuilder.transaction_deleted(tx_id, cycle_id)
    """

    @staticmethod
    def snapshot(scope: str) -> ChangeEvent:
        return ChangeEvent(
            kind=ChangeKind.SNAPSHOT,
            details={"scope": scope},
        )

    @staticmethod
    def cycle_created(cycle_id: int, year: int, month: int) -> ChangeEvent:
        return ChangeEvent(
            kind=ChangeKind.CYCLE_CREATED,
            record_id=cycle_id,
            cycle_ids=(cycle_id,),
            details={"year": year, "month": month},
        )

    @staticmethod
    def cycle_updated(cycle_id: int, year: int, month: int) -> ChangeEvent:
        return ChangeEvent(
            kind=ChangeKind.CYCLE_UPDATED,
            record_id=cycle_id,
            cycle_ids=(cycle_id,),
            details={"year": year, "month": month},
        )

    @staticmethod
    def cycle_deleted(cycle_id: int, removed_transactions: int) -> ChangeEvent:
        return ChangeEvent(
            kind=ChangeKind.CYCLE_DELETED,
            record_id=cycle_id,
            cycle_ids=(cycle_id,),
            details={"removed_transactions": removed_transactions},
        )

    @staticmethod
    def transaction_created(transaction_id: int, cycle_id: int) -> ChangeEvent:
        return ChangeEvent(
            kind=ChangeKind.TRANSACTION_CREATED,
            record_id=transaction_id,
            cycle_ids=(cycle_id,),
        )

    @staticmethod
    def transaction_updated(
        transaction_id: int,
        cycle_id: int,
        previous_cycle_id: int,
    ) -> ChangeEvent:
        if previous_cycle_id == cycle_id:
            cycle_ids: tuple[int, ...] = (cycle_id,)
        else:
            cycle_ids = (previous_cycle_id, cycle_id)
        return ChangeEvent(
            kind=ChangeKind.TRANSACTION_UPDATED,
            record_id=transaction_id,
            cycle_ids=cycle_ids,
        )

    @staticmethod
    def transaction_deleted(transaction_id: int, cycle_id: int) -> ChangeEvent:
        return ChangeEvent(
            kind=ChangeKind.TRANSACTION_DELETED,
            record_id=transaction_id,
            cycle_ids=(cycle_id,),
        )
