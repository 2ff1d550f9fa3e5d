"""
SequenceService -- per-(series, year) sequence allocation via locked counter rows.

Responsibility:
    Hands out the next contract or liquidation sequence value for a
    calendar year.  Each (series_name, year) pair has its own durable
    counter row; numbering restarts at 1 every year because a new year
    is simply a new row.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.
    Called by ContractLifecycleService inside the transaction that also
    writes the contract or liquidation row.

Invariants enforced:
    - Uniqueness: ``SELECT ... FOR UPDATE`` on the counter row serializes
      concurrent allocations for the same (series, year).  The SQL
      aggregate-max-plus-one anti-pattern is FORBIDDEN -- the locked counter
      row is the sole source of truth for the next value.
    - Transactional: the increment is only visible after the caller's
      transaction commits.  A rolled-back allocation was never issued, so
      the value is handed out again; a committed value never is.
    - Counter rows are created lazily at 0 and never deleted.

Failure modes:
    - OperationalError if the lock cannot be obtained (lock timeout,
      connection loss).  Nothing is consumed in that case.

Audit relevance:
    Every allocation is logged at DEBUG with series, year and value.
"""

from sqlalchemy import BigInteger, CheckConstraint, Integer, String, UniqueConstraint, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Mapped, Session, mapped_column

from contract_kernel.db.base import Base
from contract_kernel.domain.identifiers import IdentifierSeries
from contract_kernel.logging_config import get_logger

logger = get_logger("services.sequence")


class YearlySequenceCounter(Base):
    """
    One counter per (series_name, year).

    last_value is the most recently issued value; 0 means nothing issued yet.
    """

    __tablename__ = "yearly_sequence_counters"

    __table_args__ = (
        UniqueConstraint("series_name", "year", name="uq_sequence_series_year"),
        CheckConstraint("last_value >= 0", name="ck_sequence_last_value_nonneg"),
    )

    # "contract" or "liquidation"
    series_name: Mapped[str] = mapped_column(String(50), nullable=False)

    year: Mapped[int] = mapped_column(Integer, nullable=False)

    last_value: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        default=0,
    )


class SequenceService:
    """
    Allocates yearly sequence values.

    Guarantees:
        - Two committed allocations for the same (series, year) never return
          the same value.
        - Committed values for a (series, year) form 1..N with no gaps.
        - Series are independent: allocating a liquidation number never
          moves the contract counter.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.

    Usage:
        seq = SequenceService(session).allocate_next(IdentifierSeries.CONTRACT, 2025)
        # ... write the row carrying the number, then the caller commits
    """

    def __init__(self, session: Session):
        self._session = session

    def allocate_next(self, series: IdentifierSeries | str, year: int) -> int:
        """
        Reserve and return the next value for (series, year).

        Preconditions:
            - The caller is within an active database transaction.

        Postconditions:
            - Returns an integer >= 1.
            - The counter row stays locked until the transaction ends.
        """
        series_name = _series_name(series)
        self._ensure_counter_row(series_name, year)

        # Lock the counter row; concurrent allocators queue here.
        counter = self._session.execute(
            select(YearlySequenceCounter)
            .where(
                YearlySequenceCounter.series_name == series_name,
                YearlySequenceCounter.year == year,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one()

        counter.last_value += 1
        assert counter.last_value > 0, "sequence value must be strictly positive"
        self._session.flush()

        logger.debug(
            "sequence_allocated",
            extra={
                "series_name": series_name,
                "year": year,
                "value": counter.last_value,
            },
        )
        return counter.last_value

    def current_value(self, series: IdentifierSeries | str, year: int) -> int:
        """Last issued value for (series, year); 0 if none issued yet."""
        value = self._session.execute(
            select(YearlySequenceCounter.last_value).where(
                YearlySequenceCounter.series_name == _series_name(series),
                YearlySequenceCounter.year == year,
            )
        ).scalar_one_or_none()
        return value or 0

    def _ensure_counter_row(self, series_name: str, year: int) -> None:
        """
        Create the (series, year) row at 0 if it does not exist yet.

        Uses INSERT ... ON CONFLICT DO NOTHING where the dialect supports
        it, so that two first-of-year allocators cannot both insert.
        """
        dialect = self._session.get_bind().dialect.name
        values = {"series_name": series_name, "year": year, "last_value": 0}

        if dialect in ("postgresql", "sqlite"):
            insert = postgresql.insert if dialect == "postgresql" else sqlite.insert
            stmt = (
                insert(YearlySequenceCounter)
                .values(**values)
                .on_conflict_do_nothing(index_elements=["series_name", "year"])
            )
            self._session.execute(stmt)
            return

        exists = self._session.execute(
            select(YearlySequenceCounter.id).where(
                YearlySequenceCounter.series_name == series_name,
                YearlySequenceCounter.year == year,
            )
        ).scalar_one_or_none()
        if exists is not None:
            return

        # Another transaction may create the row concurrently; a savepoint
        # keeps the caller's work intact if our insert loses.
        savepoint = self._session.begin_nested()
        try:
            self._session.add(YearlySequenceCounter(**values))
            self._session.flush()
            savepoint.commit()
        except IntegrityError:
            logger.debug(
                "sequence_counter_race_retry",
                extra={"series_name": series_name, "year": year},
            )
            savepoint.rollback()


def _series_name(series: IdentifierSeries | str) -> str:
    if isinstance(series, IdentifierSeries):
        return series.value
    if not series:
        raise ValueError("series name must be non-empty")
    return series
