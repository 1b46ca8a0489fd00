"""
ProcessedWebhookService -- idempotency for inbound gateway callbacks.

Invariants enforced:
    - A (gateway, event_id) pair is claimed at most once.  The claim row is
      inserted before the payment is touched; a concurrent duplicate blocks
      on the unique index, fails inside its savepoint and is reported as a
      replay.
    - A replay whose payload differs from the original is not a replay.
      The caller treats it as a forged or corrupted event.
"""

from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ledger_kernel.domain.clock import Clock
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.processed_webhook import ProcessedWebhook

logger = get_logger("services.webhook")

OUTCOME_PENDING = "pending"


@dataclass(frozen=True)
class WebhookClaim:
    record: ProcessedWebhook
    is_new: bool


class ProcessedWebhookService:
    def __init__(self, session: Session, clock: Clock):
        self._session = session
        self._clock = clock

    def claim(
        self,
        gateway: str,
        event_id: str,
        event_type: str,
        payload_hash: str,
    ) -> WebhookClaim:
        existing = self.find(gateway, event_id)
        if existing is not None:
            return WebhookClaim(existing, is_new=False)

        record = ProcessedWebhook(
            gateway=gateway,
            event_id=event_id,
            event_type=event_type,
            payload_hash=payload_hash,
            outcome=OUTCOME_PENDING,
            received_at=self._clock.now(),
        )
        savepoint = self._session.begin_nested()
        try:
            self._session.add(record)
            self._session.flush()
            savepoint.commit()
        except IntegrityError:
            savepoint.rollback()
            logger.info(
                "webhook_claim_race_lost",
                extra={"gateway": gateway, "event_id": event_id},
            )
            existing = self.find(gateway, event_id)
            if existing is None:
                raise
            return WebhookClaim(existing, is_new=False)
        return WebhookClaim(record, is_new=True)

    def finish(self, record: ProcessedWebhook, payment_id: int | None, outcome: str) -> None:
        record.payment_id = payment_id
        record.outcome = outcome
        self._session.flush()

    def find(self, gateway: str, event_id: str) -> ProcessedWebhook | None:
        return self._session.execute(
            select(ProcessedWebhook)
            .where(ProcessedWebhook.gateway == gateway, ProcessedWebhook.event_id == event_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
