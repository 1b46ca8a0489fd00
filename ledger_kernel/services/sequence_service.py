"""
DocumentSequenceService -- human-readable document numbering.

Responsibility:
    Issues receipt and bill numbers of the form ``PREFIX-YEAR-NNNNNN``,
    strictly increasing per (tenant, prefix, year).

Architecture position:
    Kernel > Services -- imperative shell infrastructure.
    Called by PaymentLifecycleService (receipt numbers) and BillService
    (bill numbers).

Invariants enforced:
    - No duplicate document numbers per tenant and prefix.  The UNIQUE
      (tenant_id, prefix, number) constraint on ``document_numbers`` is the
      guard; the locked counter row only makes collisions rare.
    - Allocation is transactional: a rolled-back transaction leaves a gap at
      worst, never a duplicate.

Failure modes:
    - IntegrityError: concurrent counter creation, or a number already in
      the registry.  The attempt's savepoint is rolled back and the counter
      is re-synchronised from the registry before the next attempt.
    - ConflictError: still colliding after ``max_attempts``.
"""

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ledger_kernel.domain.clock import Clock
from ledger_kernel.exceptions import ConflictError, ValidationError
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.document_number import DocumentNumber, SequenceCounter

logger = get_logger("services.sequence")

SUFFIX_WIDTH = 6


def format_document_number(prefix: str, year: int, suffix: int) -> str:
    return f"{prefix}-{year}-{suffix:0{SUFFIX_WIDTH}d}"


def parse_document_number(number: str) -> tuple[str, int, int]:
    """
    Split ``PREFIX-YEAR-NNNNNN`` into (prefix, year, suffix).

    Raises:
        ValidationError: if the number is not in that shape.
    """
    parts = number.rsplit("-", 2)
    if len(parts) != 3 or not parts[0] or not parts[1].isdigit() or not parts[2].isdigit():
        raise ValidationError(f"malformed document number {number!r}", field="number")
    return parts[0], int(parts[1]), int(parts[2])


class DocumentSequenceService:
    """
    Contract:
        ``next_number(tenant_id, prefix)`` returns a number that no other
        committed or in-flight transaction of the same tenant holds, with a
        suffix greater than every suffix already issued for that
        tenant/prefix/year.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
        - Gap-free numbering is not promised; rolled back allocations leave
          holes.
    """

    def __init__(self, session: Session, clock: Clock, max_attempts: int = 5):
        self._session = session
        self._clock = clock
        self._max_attempts = max_attempts

    def next_number(self, tenant_id: int, prefix: str) -> str:
        """Allocate and register the next document number."""
        if not prefix or "-" in prefix:
            raise ValidationError("prefix must be non-empty and contain no '-'", field="prefix")

        year = self._clock.now().year

        for attempt in range(1, self._max_attempts + 1):
            savepoint = self._session.begin_nested()
            try:
                counter = self._lock_counter(tenant_id, prefix, year)
                if counter is None:
                    counter = SequenceCounter(
                        tenant_id=tenant_id,
                        prefix=prefix,
                        year=year,
                        current_value=self._highest_issued(tenant_id, prefix, year),
                    )
                    self._session.add(counter)
                    self._session.flush()
                elif attempt > 1:
                    # A previous attempt collided: the registry is ahead of
                    # the counter.
                    counter.current_value = max(
                        counter.current_value,
                        self._highest_issued(tenant_id, prefix, year),
                    )

                counter.current_value += 1
                number = format_document_number(prefix, year, counter.current_value)
                self._session.add(
                    DocumentNumber(
                        tenant_id=tenant_id,
                        prefix=prefix,
                        number=number,
                        issued_at=self._clock.now(),
                    )
                )
                self._session.flush()
                savepoint.commit()
            except IntegrityError:
                savepoint.rollback()
                logger.warning(
                    "document_number_conflict_retry",
                    extra={
                        "tenant_id": tenant_id,
                        "prefix": prefix,
                        "year": year,
                        "attempt": attempt,
                    },
                )
                continue

            logger.debug(
                "document_number_allocated",
                extra={"tenant_id": tenant_id, "prefix": prefix, "number": number},
            )
            return number

        logger.error(
            "document_number_conflict_exhausted",
            extra={"tenant_id": tenant_id, "prefix": prefix, "attempts": self._max_attempts},
        )
        raise ConflictError(tenant_id, prefix, self._max_attempts)

    def current_suffix(self, tenant_id: int, prefix: str, year: int | None = None) -> int:
        """Last suffix issued for the scope, without incrementing (0 if none)."""
        year = year if year is not None else self._clock.now().year
        value = self._session.execute(
            select(SequenceCounter.current_value).where(
                SequenceCounter.tenant_id == tenant_id,
                SequenceCounter.prefix == prefix,
                SequenceCounter.year == year,
            )
        ).scalar_one_or_none()
        return value or 0

    def _lock_counter(self, tenant_id: int, prefix: str, year: int) -> SequenceCounter | None:
        return self._session.execute(
            select(SequenceCounter)
            .where(
                SequenceCounter.tenant_id == tenant_id,
                SequenceCounter.prefix == prefix,
                SequenceCounter.year == year,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def _highest_issued(self, tenant_id: int, prefix: str, year: int) -> int:
        """Highest suffix already in the registry for PREFIX-YEAR-, or 0."""
        scope = f"{prefix}-{year}-"
        # Longest first, then lexicographic: numeric order for digit suffixes
        # even once they outgrow the zero padding.
        last = self._session.execute(
            select(DocumentNumber.number)
            .where(
                DocumentNumber.tenant_id == tenant_id,
                DocumentNumber.prefix == prefix,
                DocumentNumber.number.startswith(scope, autoescape=True),
            )
            .order_by(func.length(DocumentNumber.number).desc(), DocumentNumber.number.desc())
            .limit(1)
        ).scalar_one_or_none()
        if last is None:
            return 0
        return parse_document_number(last)[2]
