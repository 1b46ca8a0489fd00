"""
BillService -- the Bill companion of each payment.

Responsibility:
    Inside the payment-creation transaction, issues exactly one Bill with a
    sequence-generated number.  Keeps the bill status mirroring the payment
    status, and records rendered document artifacts after commit.

Invariants enforced:
    - One bill per payment (UNIQUE payment_id); ``issue_bill`` refuses a
      second one.
    - bill.status == bill_status_for(payment.status) after every payment
      transition.
"""

from sqlalchemy import select
from sqlalchemy.orm import Session

from ledger_kernel.domain.clock import Clock
from ledger_kernel.domain.dtos import RequestContext
from ledger_kernel.domain.lifecycle import PaymentStatus, bill_status_for
from ledger_kernel.exceptions import BusinessRuleError, NotFoundError
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.bill import Bill, BillArtifact
from ledger_kernel.models.payment import Payment
from ledger_kernel.services.sequence_service import DocumentSequenceService
from ledger_kernel.utils.hashing import hash_bytes

logger = get_logger("services.bill")


class BillService:
    def __init__(
        self,
        session: Session,
        clock: Clock,
        sequences: DocumentSequenceService,
        *,
        bill_prefix: str = "BILL",
    ):
        self._session = session
        self._clock = clock
        self._sequences = sequences
        self._bill_prefix = bill_prefix

    def issue_bill(
        self,
        ctx: RequestContext,
        payment: Payment,
        description: str | None = None,
    ) -> Bill:
        if self.get_for_payment(payment.id) is not None:
            raise BusinessRuleError(
                f"payment {payment.id} already has a bill", entity_id=payment.id
            )

        bill = Bill(
            tenant_id=payment.tenant_id,
            payment_id=payment.id,
            bill_number=self._sequences.next_number(payment.tenant_id, self._bill_prefix),
            total_amount=payment.total,
            status=bill_status_for(PaymentStatus(payment.status)).value,
            description=description,
            created_by_id=ctx.actor_id,
        )
        self._session.add(bill)
        self._session.flush()

        logger.info(
            "bill_issued",
            extra={
                "payment_id": payment.id,
                "bill_number": bill.bill_number,
                "bill_status": bill.status,
            },
        )
        return bill

    def get_for_payment(self, payment_id: int) -> Bill | None:
        return self._session.execute(
            select(Bill).where(Bill.payment_id == payment_id)
        ).scalar_one_or_none()

    def require_for_payment(self, payment_id: int) -> Bill:
        bill = self.get_for_payment(payment_id)
        if bill is None:
            raise NotFoundError("Bill", f"payment:{payment_id}")
        return bill

    def sync_status(self, payment: Payment) -> Bill | None:
        """Mirror the payment status (and total) onto its bill."""
        bill = self.get_for_payment(payment.id)
        if bill is None:
            return None
        status = bill_status_for(PaymentStatus(payment.status)).value
        if bill.status != status or bill.total_amount != payment.total:
            bill.status = status
            bill.total_amount = payment.total
            self._session.flush()
            logger.debug(
                "bill_status_synced",
                extra={"bill_number": bill.bill_number, "bill_status": status},
            )
        return bill

    def record_artifact(
        self,
        bill: Bill,
        kind: str,
        template_ref: str,
        content: bytes,
        mime_type: str,
        location: str | None = None,
    ) -> BillArtifact:
        artifact = BillArtifact(
            bill_id=bill.id,
            kind=kind,
            template_ref=template_ref,
            mime_type=mime_type,
            size_bytes=len(content),
            checksum=hash_bytes(content),
            location=location,
        )
        self._session.add(artifact)
        self._session.flush()
        return artifact

    def artifacts(self, bill_id: int) -> list[BillArtifact]:
        return list(
            self._session.execute(
                select(BillArtifact).where(BillArtifact.bill_id == bill_id).order_by(BillArtifact.id)
            ).scalars()
        )
