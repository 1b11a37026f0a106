"""Knowledge base: SQLite store of element signatures, selector attempts, failures and flaky stats.

Every mutating call commits before returning, so the file on disk is always
current. Reliability history is append-only; the flaky aggregate is updated
in place.
"""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Optional

from sqlalchemy import JSON, Boolean, Float, ForeignKey, Integer, String, Text, create_engine, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column

from qamap.models.knowledge import ElementSignature, FlakyTest, SelectorAttempt, TestFailure

logger = logging.getLogger(__name__)

MIN_RUNS_FOR_FLAKY = 3


def _now() -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())


class Base(DeclarativeBase):
    pass


class ElementSignatureRow(Base):
    __tablename__ = "element_signatures"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    element_id: Mapped[str] = mapped_column(String(200), index=True)
    role: Mapped[str] = mapped_column(String(50), default="")
    text: Mapped[str] = mapped_column(Text, default="")
    attributes: Mapped[dict] = mapped_column(JSON, default=dict)
    primary_selector: Mapped[str] = mapped_column(Text)
    alternative_selectors: Mapped[list] = mapped_column(JSON, default=list)
    stability: Mapped[float] = mapped_column(Float, default=0.5)
    last_seen: Mapped[str] = mapped_column(String(32), default="")
    success_count: Mapped[int] = mapped_column(Integer, default=0)
    fail_count: Mapped[int] = mapped_column(Integer, default=0)


class SelectorAttemptRow(Base):
    __tablename__ = "selector_attempts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    signature_id: Mapped[str] = mapped_column(ForeignKey("element_signatures.id"), index=True)
    selector: Mapped[str] = mapped_column(Text)
    success: Mapped[bool] = mapped_column(Boolean)
    timestamp: Mapped[str] = mapped_column(String(32))
    test_id: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)


class TestFailureRow(Base):
    __tablename__ = "test_failures"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    test_id: Mapped[str] = mapped_column(String(200), index=True)
    step_id: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    error_type: Mapped[str] = mapped_column(String(32), index=True)
    error_message: Mapped[str] = mapped_column(Text)
    selector: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    timestamp: Mapped[str] = mapped_column(String(32))
    resolved: Mapped[bool] = mapped_column(Boolean, default=False)
    suggested_fix: Mapped[Optional[str]] = mapped_column(Text, nullable=True)


class FlakyTestRow(Base):
    __tablename__ = "flaky_tests"

    test_id: Mapped[str] = mapped_column(String(200), primary_key=True)
    total_runs: Mapped[int] = mapped_column(Integer, default=0)
    failures: Mapped[int] = mapped_column(Integer, default=0)
    flakiness_score: Mapped[float] = mapped_column(Float, default=0.0)
    last_run: Mapped[str] = mapped_column(String(32), default="")


def _signature(row: ElementSignatureRow) -> ElementSignature:
    return ElementSignature(
        id=row.id,
        element_id=row.element_id,
        role=row.role,
        text=row.text or "",
        attributes=row.attributes or {},
        primary_selector=row.primary_selector,
        alternative_selectors=list(row.alternative_selectors or []),
        stability=row.stability,
        last_seen=row.last_seen,
        success_count=row.success_count,
        fail_count=row.fail_count,
    )


def _attempt(row: SelectorAttemptRow) -> SelectorAttempt:
    return SelectorAttempt(
        id=row.id, signature_id=row.signature_id, selector=row.selector,
        success=row.success, timestamp=row.timestamp, test_id=row.test_id,
    )


def _failure(row: TestFailureRow) -> TestFailure:
    return TestFailure(
        id=row.id, test_id=row.test_id, step_id=row.step_id, error_type=row.error_type,
        error_message=row.error_message, selector=row.selector, timestamp=row.timestamp,
        resolved=row.resolved, suggested_fix=row.suggested_fix,
    )


def _flaky(row: FlakyTestRow) -> FlakyTest:
    return FlakyTest(
        test_id=row.test_id, total_runs=row.total_runs, failures=row.failures,
        flakiness_score=row.flakiness_score, last_run=row.last_run,
    )


class KnowledgeBase:
    """Handle on one knowledge-base file. Use ``open()``/``close()`` or ``with``."""

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self._engine = None
        self._session: Optional[Session] = None

    def open(self) -> "KnowledgeBase":
        if self._session is not None:
            return self
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._engine = create_engine(f"sqlite:///{self.path}")
        Base.metadata.create_all(self._engine)
        self._session = Session(self._engine, expire_on_commit=False)
        logger.debug("Knowledge base opened at %s", self.path)
        return self

    def close(self) -> None:
        if self._session is not None:
            try:
                self._session.commit()
            except SQLAlchemyError as e:
                logger.warning("Knowledge base commit on close failed: %s", e)
                self._session.rollback()
            finally:
                self._session.close()
                self._session = None
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None

    def __enter__(self) -> "KnowledgeBase":
        return self.open()

    def __exit__(self, *exc) -> None:
        self.close()

    @property
    def session(self) -> Session:
        if self._session is None:
            raise RuntimeError("Knowledge base is not open")
        return self._session

    def _commit(self) -> None:
        """Commit, rolling back on failure so the session stays usable."""
        try:
            self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            raise

    # --- Element signatures ---

    def upsert_signature(self, signature: ElementSignature) -> None:
        """Insert, or refresh the mutable fields of, a signature. Counters are left alone."""
        row = self.session.get(ElementSignatureRow, signature.id)
        if row is None:
            row = ElementSignatureRow(
                id=signature.id,
                element_id=signature.element_id,
                role=signature.role,
                success_count=0,
                fail_count=0,
            )
            self.session.add(row)
        row.text = signature.text
        row.attributes = dict(signature.attributes)
        row.primary_selector = signature.primary_selector
        row.alternative_selectors = list(signature.alternative_selectors)
        row.stability = signature.stability
        row.last_seen = signature.last_seen or _now()
        self._commit()

    def get_signature(self, signature_id: str) -> Optional[ElementSignature]:
        row = self.session.get(ElementSignatureRow, signature_id)
        return _signature(row) if row is not None else None

    def get_signature_by_element_id(self, element_id: str) -> Optional[ElementSignature]:
        stmt = (
            select(ElementSignatureRow)
            .where(ElementSignatureRow.element_id == element_id)
            .order_by(ElementSignatureRow.last_seen.desc())
            .limit(1)
        )
        row = self.session.scalars(stmt).first()
        return _signature(row) if row is not None else None

    def increment_success(self, signature_id: str) -> None:
        row = self.session.get(ElementSignatureRow, signature_id)
        if row is not None:
            row.success_count += 1
            self._commit()

    def increment_fail(self, signature_id: str) -> None:
        row = self.session.get(ElementSignatureRow, signature_id)
        if row is not None:
            row.fail_count += 1
            self._commit()

    # --- Selector attempts ---

    def record_attempt(
        self, signature_id: str, selector: str, success: bool, test_id: Optional[str] = None,
    ) -> None:
        self.session.add(SelectorAttemptRow(
            signature_id=signature_id,
            selector=selector,
            success=success,
            timestamp=_now(),
            test_id=test_id,
        ))
        self._commit()

    def get_recent_attempts(self, signature_id: str, limit: int = 10) -> list[SelectorAttempt]:
        stmt = (
            select(SelectorAttemptRow)
            .where(SelectorAttemptRow.signature_id == signature_id)
            .order_by(SelectorAttemptRow.timestamp.desc(), SelectorAttemptRow.id.desc())
            .limit(limit)
        )
        return [_attempt(row) for row in self.session.scalars(stmt)]

    # --- Failures ---

    def record_failure(
        self,
        test_id: str,
        error_type: str,
        error_message: str,
        step_id: Optional[str] = None,
        selector: Optional[str] = None,
        suggested_fix: Optional[str] = None,
    ) -> int:
        row = TestFailureRow(
            test_id=test_id,
            step_id=step_id,
            error_type=error_type,
            error_message=error_message,
            selector=selector,
            timestamp=_now(),
            resolved=False,
            suggested_fix=suggested_fix,
        )
        self.session.add(row)
        self._commit()
        return row.id

    def get_failures_by_type(self, error_type: str, limit: int = 50) -> list[TestFailure]:
        """Unresolved failures of one type, newest first."""
        stmt = (
            select(TestFailureRow)
            .where(TestFailureRow.error_type == error_type, TestFailureRow.resolved.is_(False))
            .order_by(TestFailureRow.timestamp.desc(), TestFailureRow.id.desc())
            .limit(limit)
        )
        return [_failure(row) for row in self.session.scalars(stmt)]

    def mark_failure_resolved(self, failure_id: int) -> None:
        row = self.session.get(TestFailureRow, failure_id)
        if row is not None:
            row.resolved = True
            self._commit()

    # --- Flaky aggregate ---

    def record_test_run(self, test_id: str, passed: bool) -> None:
        row = self.session.get(FlakyTestRow, test_id)
        if row is None:
            row = FlakyTestRow(test_id=test_id, total_runs=0, failures=0)
            self.session.add(row)
        row.total_runs += 1
        if not passed:
            row.failures += 1
        row.flakiness_score = row.failures / row.total_runs
        row.last_run = _now()
        self._commit()

    def get_flaky_test(self, test_id: str) -> Optional[FlakyTest]:
        row = self.session.get(FlakyTestRow, test_id)
        return _flaky(row) if row is not None else None

    def get_flaky_tests(self, threshold: float = 0.1, limit: int = 20) -> list[FlakyTest]:
        stmt = (
            select(FlakyTestRow)
            .where(
                FlakyTestRow.flakiness_score >= threshold,
                FlakyTestRow.total_runs >= MIN_RUNS_FOR_FLAKY,
            )
            .order_by(FlakyTestRow.flakiness_score.desc(), FlakyTestRow.test_id)
            .limit(limit)
        )
        return [_flaky(row) for row in self.session.scalars(stmt)]


def open_knowledge_base(path: str | Path) -> Optional[KnowledgeBase]:
    """Open the store, or return None (learning disabled) when it cannot be opened."""
    kb = KnowledgeBase(path)
    try:
        return kb.open()
    except (SQLAlchemyError, OSError) as e:
        logger.warning("Knowledge base unavailable at %s: %s. Learning disabled.", path, e)
        return None
