"""
ledger_services.unit_of_work -- transaction owner for ledger operations.

Responsibility:
    Opens one session per operation, wires the kernel services onto it,
    commits on success and rolls back on any exception.  Only after a
    successful commit are the transaction's pending changes published
    (cache invalidation, lifecycle events).

Invariants enforced:
    - Every mutating operation either fully succeeds (row changes, log
      entries, cache invalidation, events) or fully fails.
    - Kernel services never commit; this is the only place that does.

Usage:
    uow = UnitOfWork(store, clock, config, cache, outbox)
    with uow.begin(ctx) as tx:
        payment = tx.lifecycle.create(ctx, draft)
        tx.bills.issue_bill(ctx, payment)
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass

from sqlalchemy.orm import Session

from ledger_config.schema import LedgerConfig
from ledger_kernel.db.engine import LedgerStore
from ledger_kernel.domain.clock import Clock
from ledger_kernel.domain.dtos import RequestContext
from ledger_kernel.logging_config import LogContext, get_logger
from ledger_kernel.selectors.payment_selector import PaymentSelector
from ledger_kernel.services.bill_service import BillService
from ledger_kernel.services.installment_service import InstallmentSchedulerService
from ledger_kernel.services.lifecycle_service import PaymentLifecycleService
from ledger_kernel.services.payment_cache import PaymentCache
from ledger_kernel.services.payment_log_service import PaymentLogService
from ledger_kernel.services.pending_changes import PendingChanges
from ledger_kernel.services.refund_service import RefundLedgerService
from ledger_kernel.services.sequence_service import DocumentSequenceService
from ledger_kernel.services.webhook_service import ProcessedWebhookService
from ledger_services.outbox import OutboxDispatcher

logger = get_logger("services.unit_of_work")


@dataclass
class LedgerTransaction:
    """Kernel services sharing one session and one PendingChanges buffer."""

    session: Session
    changes: PendingChanges
    sequences: DocumentSequenceService
    log: PaymentLogService
    bills: BillService
    lifecycle: PaymentLifecycleService
    refunds: RefundLedgerService
    installments: InstallmentSchedulerService
    webhooks: ProcessedWebhookService
    selector: PaymentSelector


class UnitOfWork:
    def __init__(
        self,
        store: LedgerStore,
        clock: Clock,
        config: LedgerConfig,
        cache: PaymentCache,
        outbox: OutboxDispatcher,
    ):
        self._store = store
        self._clock = clock
        self._config = config
        self._cache = cache
        self._outbox = outbox

    @contextmanager
    def begin(self, ctx: RequestContext | None = None) -> Iterator[LedgerTransaction]:
        """
        Transactional scope.  Commits on normal exit; on exception rolls
        back, discards pending changes and re-raises.
        """
        changes = PendingChanges()
        session = self._store.session()
        with LogContext.bind(
            correlation_id=ctx.correlation_id if ctx else None,
            tenant_id=ctx.tenant_id if ctx else None,
            actor_id=ctx.actor_id if ctx else None,
        ):
            try:
                yield self._build(session, changes)
                session.commit()
            except Exception:
                session.rollback()
                changes.discard()
                logger.debug("transaction_rolled_back")
                raise
            finally:
                session.close()

            self._outbox.publish(changes)

    @contextmanager
    def read(self, ctx: RequestContext | None = None) -> Iterator[PaymentSelector]:
        """Read-only scope; always rolled back."""
        session = self._store.session()
        with LogContext.bind(
            tenant_id=ctx.tenant_id if ctx else None,
            actor_id=ctx.actor_id if ctx else None,
        ):
            try:
                yield PaymentSelector(session)
            finally:
                session.rollback()
                session.close()

    def _build(self, session: Session, changes: PendingChanges) -> LedgerTransaction:
        config = self._config
        clock = self._clock
        sequences = DocumentSequenceService(
            session, clock, max_attempts=config.sequence_max_attempts
        )
        log = PaymentLogService(session, clock, changes, self._cache)
        bills = BillService(session, clock, sequences, bill_prefix=config.bill_prefix)
        lifecycle = PaymentLifecycleService(
            session,
            clock,
            sequences,
            log,
            bills,
            receipt_prefix=config.receipt_prefix,
            late_fee_daily_rate=config.late_fee_daily_rate,
            late_fee_cap_ratio=config.late_fee_cap_ratio,
            apply_late_fee_on_create=config.apply_late_fee_on_create,
        )
        refunds = RefundLedgerService(
            session,
            clock,
            lifecycle,
            log,
            requires_approval=config.refund_requires_approval,
        )
        installments = InstallmentSchedulerService(
            session,
            clock,
            lifecycle,
            log,
            default_interval=config.installment_interval,
            quantum=config.installment_quantum,
        )
        return LedgerTransaction(
            session=session,
            changes=changes,
            sequences=sequences,
            log=log,
            bills=bills,
            lifecycle=lifecycle,
            refunds=refunds,
            installments=installments,
            webhooks=ProcessedWebhookService(session, clock),
            selector=PaymentSelector(session),
        )
