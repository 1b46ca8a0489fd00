"""
Module: ledger_kernel.models.processed_webhook
Responsibility: Idempotency record for inbound gateway webhooks.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - One row per (gateway, event_id): a replayed webhook finds its row and
      is acknowledged without re-applying the transition.
"""

from datetime import datetime

from sqlalchemy import String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import Base


class ProcessedWebhook(Base):
    __tablename__ = "processed_webhooks"

    __table_args__ = (
        UniqueConstraint("gateway", "event_id", name="uq_processed_webhook"),
    )

    gateway: Mapped[str] = mapped_column(String(30), nullable=False)
    event_id: Mapped[str] = mapped_column(String(120), nullable=False)
    event_type: Mapped[str] = mapped_column(String(60), nullable=False)
    payload_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    payment_id: Mapped[int | None] = mapped_column(nullable=True)
    outcome: Mapped[str] = mapped_column(String(40), nullable=False)
    received_at: Mapped[datetime] = mapped_column(nullable=False)
