"""
SequenceService -- job number allocation from locked per-year counters.

Responsibility:
    Hands out job numbers of the form ``<prefix>-<year>-<n:06d>``.  Each
    (prefix, year) pair owns one counter row, so numbering restarts at 1
    every January and two prefixes never share a sequence.

Architecture position:
    Kernel > Services.  Called by ``SqlJobRepository.next_job_number``
    inside the same transaction that inserts the job sheet.

Invariants enforced:
    - Numbers for one (prefix, year) are strictly increasing with no reuse:
      the counter row is read ``FOR UPDATE`` and only this service writes it.
    - Nothing is committed here; a rolled-back intake also rolls back its
      number.

Failure modes:
    - Two sessions creating the first counter of a year at once: the loser
      hits the unique constraint inside a savepoint, rolls the savepoint
      back and increments the winner's row instead.
"""

from sqlalchemy import Integer, String, UniqueConstraint, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Mapped, Session, mapped_column

from repair_kernel.db.base import Base
from repair_kernel.logging_config import get_logger

logger = get_logger("services.sequence")


class JobNumberCounter(Base):
    __tablename__ = "job_number_counters"
    __table_args__ = (
        UniqueConstraint("prefix", "year", name="uq_job_number_counter_prefix_year"),
    )

    prefix: Mapped[str] = mapped_column(String(16), nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    last_value: Mapped[int] = mapped_column(nullable=False, default=0)


class SequenceService:
    """Allocates job numbers.  Never commits; the caller owns the transaction."""

    def __init__(self, session: Session):
        self._session = session

    def _lock_counter(self, prefix: str, year: int) -> JobNumberCounter | None:
        return self._session.execute(
            select(JobNumberCounter)
            .where(JobNumberCounter.prefix == prefix, JobNumberCounter.year == year)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def _open_counter(self, prefix: str, year: int) -> JobNumberCounter:
        savepoint = self._session.begin_nested()
        counter = JobNumberCounter(prefix=prefix, year=year, last_value=0)
        self._session.add(counter)
        try:
            self._session.flush()
        except IntegrityError:
            savepoint.rollback()
            logger.debug(
                "job_number_counter_race", extra={"prefix": prefix, "year": year}
            )
            counter = self._lock_counter(prefix, year)
            if counter is None:
                raise
            return counter
        savepoint.commit()
        return counter

    def next_number(self, prefix: str, year: int) -> int:
        counter = self._lock_counter(prefix, year) or self._open_counter(prefix, year)
        counter.last_value += 1
        self._session.flush()
        return counter.last_value

    def last_number(self, prefix: str, year: int) -> int:
        """Highest number handed out so far for the year, 0 if none."""
        value = self._session.execute(
            select(JobNumberCounter.last_value).where(
                JobNumberCounter.prefix == prefix, JobNumberCounter.year == year
            )
        ).scalar_one_or_none()
        return value or 0

    def next_job_number(self, prefix: str, year: int) -> str:
        number = self.next_number(prefix, year)
        job_number = f"{prefix}-{year}-{number:06d}"
        logger.debug("job_number_allocated", extra={"job_number": job_number})
        return job_number
