"""
BillingDocumentAssembler -- best-effort rendering of receipt and bill.

Runs after the payment and its bill have committed.  Each template is
rendered through the external DocumentRenderer with a bounded wait, and each
rendered artifact is recorded against the bill.  Nothing here raises: a
failed or timed-out render is logged and reported in the DocumentOutcome.
"""

from __future__ import annotations

from typing import Any

from ledger_config.schema import LedgerConfig
from ledger_kernel.domain.dtos import PaymentView, RequestContext
from ledger_kernel.logging_config import LogContext, get_logger
from ledger_kernel.selectors.payment_selector import BillView
from ledger_kernel.utils.hashing import to_json_safe
from ledger_services.interfaces import DocumentRenderer, RenderedDocument
from ledger_services.results import DocumentOutcome
from ledger_services.timeouts import CallTimedOut, call_with_timeout
from ledger_services.unit_of_work import UnitOfWork

logger = get_logger("services.documents")


def build_field_map(payment: PaymentView, bill: BillView, kind: str) -> dict[str, Any]:
    """Template fields for one document, JSON-safe."""
    return to_json_safe({
        "document": kind,
        "tenant_id": payment.tenant_id,
        "payment_id": payment.id,
        "receipt_number": payment.receipt_number,
        "bill_number": bill.bill_number,
        "bill_status": bill.status,
        "description": bill.description,
        "amount": payment.amount,
        "discount": payment.discount,
        "fine": payment.fine,
        "total": payment.total,
        "status": payment.status,
        "method": payment.method,
        "gateway": payment.gateway,
        "payment_date": payment.payment_date,
        "due_date": payment.due_date,
        "payment_type": payment.payment_type,
        "student_id": payment.student_id,
        "guardian_id": payment.guardian_id,
        "remarks": payment.remarks,
    })


class BillingDocumentAssembler:
    def __init__(
        self,
        uow: UnitOfWork,
        config: LedgerConfig,
        renderer: DocumentRenderer | None = None,
    ):
        self._uow = uow
        self._config = config
        self._renderer = renderer

    def render_documents(self, ctx: RequestContext, payment_id: int) -> DocumentOutcome:
        with LogContext.bind(payment_id=payment_id):
            if self._renderer is None:
                logger.warning("document_render_skipped", extra={"reason": "no renderer configured"})
                return DocumentOutcome(payment_id, errors=("no document renderer configured",))

            try:
                with self._uow.read(ctx) as selector:
                    payment = selector.get(ctx, payment_id, include_deleted=True)
                    bill = selector.bill(ctx, payment_id)
            except Exception as exc:
                logger.warning("document_render_failed", extra={"error": str(exc)}, exc_info=True)
                return DocumentOutcome(payment_id, errors=(f"lookup: {exc}",))

            templates = (
                ("receipt", self._config.receipt_template),
                ("bill", self._config.bill_template),
            )
            rendered: list[tuple[str, str, RenderedDocument]] = []
            errors: list[str] = []
            for kind, template_ref in templates:
                document = self._render_one(kind, template_ref, build_field_map(payment, bill, kind))
                if isinstance(document, RenderedDocument):
                    rendered.append((kind, template_ref, document))
                else:
                    errors.append(document)

            recorded: list[str] = []
            if rendered:
                try:
                    with self._uow.begin(ctx) as tx:
                        bill_row = tx.bills.require_for_payment(payment_id)
                        for kind, template_ref, document in rendered:
                            tx.bills.record_artifact(
                                bill_row,
                                kind,
                                template_ref,
                                document.content,
                                document.mime_type,
                                location=document.location,
                            )
                            recorded.append(kind)
                except Exception as exc:
                    logger.warning("document_artifacts_not_recorded", extra={"error": str(exc)}, exc_info=True)
                    recorded = []
                    errors.append(f"record: {exc}")

            logger.info(
                "documents_rendered",
                extra={"rendered": recorded, "error_count": len(errors)},
            )
            return DocumentOutcome(payment_id, rendered=tuple(recorded), errors=tuple(errors))

    def _render_one(self, kind: str, template_ref: str, field_map: dict[str, Any]) -> RenderedDocument | str:
        timeout = self._config.render_timeout_seconds
        try:
            document = call_with_timeout(self._renderer.render, timeout, template_ref, field_map)
        except CallTimedOut:
            logger.warning(
                "document_render_failed",
                extra={"kind": kind, "template_ref": template_ref, "error": "timeout", "timeout_seconds": timeout},
            )
            return f"{kind}: no response within {timeout}s"
        except Exception as exc:
            logger.warning(
                "document_render_failed",
                extra={"kind": kind, "template_ref": template_ref, "error": str(exc)},
                exc_info=True,
            )
            return f"{kind}: {exc}"
        if not isinstance(document, RenderedDocument) or not document.content:
            logger.warning(
                "document_render_failed",
                extra={"kind": kind, "template_ref": template_ref, "error": "empty document"},
            )
            return f"{kind}: renderer returned no content"
        return document
