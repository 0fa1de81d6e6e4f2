"""State Manager backed by SQLite via SQLAlchemy."""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

from sqlalchemy import DateTime, Engine, String, Text, create_engine, select
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column

from regime_dca.core.types import PurchaseDetails, TraderState

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """Declarative base for SQLite models."""


class TraderStateRecord(Base):
    """Persisted single-record trader state snapshot."""

    __tablename__ = "trader_state"

    key: Mapped[str] = mapped_column(String(32), primary_key=True, default="global")
    state_json: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC)
    )


class PurchaseRecord(Base):
    """Append-only log of executed purchases for audit."""

    __tablename__ = "purchase_log"

    purchase_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    order_id: Mapped[str] = mapped_column(String(200), nullable=False)
    details_json: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC)
    )


class StateManager:
    """Loads and commits ``TraderState``; each save is a single transaction."""

    def __init__(self, db_url: str) -> None:
        self._engine: Engine = create_engine(db_url, future=True)
        Base.metadata.create_all(self._engine)

    def load_trader_state(self) -> TraderState:
        """Load persisted state; missing or corrupt records yield defaults."""
        with Session(self._engine) as session:
            record = session.get(TraderStateRecord, "global")
            if record is None:
                return TraderState()
            raw = record.state_json
        try:
            payload = json.loads(raw)
            if not isinstance(payload, dict):
                raise ValueError("state root is not an object")
            return TraderState.from_dict(payload)
        except (TypeError, ValueError, OverflowError) as exc:
            logger.warning("corrupt trader state ignored, using defaults: %s", exc)
            return TraderState()

    def save_trader_state(self, state: TraderState, purchase: PurchaseDetails | None = None) -> None:
        """Persist state, and the purchase that produced it, in one commit."""
        serialized = json.dumps(state.to_dict(), ensure_ascii=False)
        with Session(self._engine) as session:
            record = session.get(TraderStateRecord, "global")
            if record is None:
                session.add(TraderStateRecord(key="global", state_json=serialized))
            else:
                record.state_json = serialized
                record.updated_at = datetime.now(UTC)
            if purchase is not None:
                session.add(
                    PurchaseRecord(
                        purchase_id=str(uuid4()),
                        order_id=purchase.order_id,
                        details_json=json.dumps(purchase.to_dict(), ensure_ascii=False),
                    )
                )
            session.commit()

    def get_purchases(self) -> list[dict[str, Any]]:
        """Executed purchases ordered from oldest to newest."""
        with Session(self._engine) as session:
            rows = session.execute(select(PurchaseRecord).order_by(PurchaseRecord.created_at)).scalars()
            return [
                {
                    "purchase_id": row.purchase_id,
                    "order_id": row.order_id,
                    "details": json.loads(row.details_json),
                    "created_at": row.created_at.isoformat(),
                }
                for row in rows
            ]
