"""Durable per-call conversation state plus the best-effort audit tables.

``call_states`` holds one JSON document per call id.  Saves are a single
atomic ``INSERT ... ON CONFLICT DO UPDATE`` that bumps a version column.
Overlapping webhook deliveries for the same call are not fenced with locks.
A save whose loaded version is stale is logged and the last writer wins.

``tool_logs`` and ``booking_records`` are written on a separate session and
every failure is swallowed after logging.  An audit write must never turn a
successful booking into an error reply.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import JSON, Boolean, DateTime, Float, Integer, String, Text, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Mapped, Session, mapped_column, sessionmaker

from dental_booking.models import ConversationState
from dental_booking.services.database import Base

logger = logging.getLogger(__name__)

_UPSERT_DIALECTS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


# ── Tables ───────────────────────────────────────────────────────────


class CallStateRow(Base):
    __tablename__ = "call_states"

    call_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    practice_id: Mapped[str] = mapped_column(String(64), index=True)
    state: Mapped[dict[str, Any]] = mapped_column(JSON)
    version: Mapped[int] = mapped_column(Integer, default=1)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class ToolLogRow(Base):
    __tablename__ = "tool_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    call_id: Mapped[str] = mapped_column(String(128), index=True)
    tool_call_id: Mapped[str | None] = mapped_column(String(128))
    tool_name: Mapped[str] = mapped_column(String(100))
    arguments: Mapped[dict[str, Any] | None] = mapped_column(JSON)
    result: Mapped[str | None] = mapped_column(Text)
    success: Mapped[bool] = mapped_column(Boolean)
    error_code: Mapped[str | None] = mapped_column(String(64))
    latency_ms: Mapped[float] = mapped_column(Float)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class BookingRecordRow(Base):
    __tablename__ = "booking_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    call_id: Mapped[str] = mapped_column(String(128), index=True)
    practice_id: Mapped[str] = mapped_column(String(64), index=True)
    external_booking_id: Mapped[str] = mapped_column(String(64))
    patient_id: Mapped[int | None] = mapped_column(Integer)
    patient_name: Mapped[str | None] = mapped_column(String(200))
    patient_phone: Mapped[str | None] = mapped_column(String(32))
    patient_email: Mapped[str | None] = mapped_column(String(200))
    appointment_type: Mapped[str | None] = mapped_column(String(200))
    slot_time: Mapped[str] = mapped_column(String(64))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


# ── Conversation state ───────────────────────────────────────────────


class ConversationStore:
    """Load and save :class:`ConversationState` documents by call id."""

    def __init__(self, session_factory: sessionmaker[Session]):
        self._session_factory = session_factory

    def load(self, call_id: str) -> ConversationState | None:
        with self._session_factory() as session:
            row = session.get(CallStateRow, call_id)
            if row is None:
                return None
            state = ConversationState.from_document(row.state)
            return state.model_copy(update={"version": row.version})

    def load_or_create(self, call_id: str, practice_id: str) -> ConversationState:
        state = self.load(call_id)
        if state is None:
            logger.info("Call %s: starting new conversation state", call_id)
            return ConversationState.initial(call_id, practice_id)
        return state

    def save(self, state: ConversationState) -> ConversationState:
        """Upsert *state* and return it carrying the new stored version."""
        now = datetime.now(UTC)
        document = state.to_document()

        with self._session_factory() as session, session.begin():
            stored_version = session.scalar(
                select(CallStateRow.version).where(CallStateRow.call_id == state.call_id),
            )
            if stored_version is not None and stored_version != state.version:
                logger.warning(
                    "Call %s: concurrent write detected (loaded v%d, stored v%d); "
                    "last writer wins",
                    state.call_id, state.version, stored_version,
                )

            insert = _UPSERT_DIALECTS.get(session.get_bind().dialect.name)
            if insert is None:
                new_version = self._save_with_merge(session, state, document, now)
            else:
                stmt = insert(CallStateRow).values(
                    call_id=state.call_id,
                    practice_id=state.practice_id,
                    state=document,
                    version=1,
                    updated_at=now,
                )
                stmt = stmt.on_conflict_do_update(
                    index_elements=[CallStateRow.call_id],
                    set_={
                        "state": stmt.excluded.state,
                        "version": CallStateRow.version + 1,
                        "updated_at": stmt.excluded.updated_at,
                    },
                ).returning(CallStateRow.version)
                new_version = session.execute(stmt).scalar_one()

        logger.debug("Call %s: saved state v%d (%s)", state.call_id, new_version, state.stage)
        return state.model_copy(update={"version": new_version})

    @staticmethod
    def _save_with_merge(
        session: Session,
        state: ConversationState,
        document: dict[str, Any],
        now: datetime,
    ) -> int:
        row = session.get(CallStateRow, state.call_id, with_for_update=True)
        if row is None:
            row = CallStateRow(
                call_id=state.call_id,
                practice_id=state.practice_id,
                state=document,
                version=1,
                updated_at=now,
            )
            session.add(row)
        else:
            row.state = document
            row.version += 1
            row.updated_at = now
        session.flush()
        return row.version


# ── Audit writers (best-effort) ─────────────────────────────────────


class ToolLogWriter:
    """Records every tool invocation for debugging."""

    def __init__(self, session_factory: sessionmaker[Session]):
        self._session_factory = session_factory

    def record(
        self,
        *,
        call_id: str,
        tool_call_id: str | None,
        tool_name: str,
        arguments: dict[str, Any] | None,
        result: str | None,
        success: bool,
        latency_ms: float,
        error_code: str | None = None,
    ) -> None:
        try:
            with self._session_factory() as session, session.begin():
                session.add(ToolLogRow(
                    call_id=call_id,
                    tool_call_id=tool_call_id,
                    tool_name=tool_name,
                    arguments=arguments,
                    result=result,
                    success=success,
                    error_code=error_code,
                    latency_ms=latency_ms,
                    created_at=datetime.now(UTC),
                ))
        except Exception:
            logger.exception("Failed to write tool log for %s (call %s)", tool_name, call_id)


class BookingRecordWriter:
    """Keeps a summary row per confirmed booking for reporting."""

    def __init__(self, session_factory: sessionmaker[Session]):
        self._session_factory = session_factory

    def record(self, state: ConversationState) -> None:
        booking = state.booking
        if not booking.confirmed_booking_id or booking.selected_slot is None:
            return
        try:
            with self._session_factory() as session, session.begin():
                session.add(BookingRecordRow(
                    call_id=state.call_id,
                    practice_id=state.practice_id,
                    external_booking_id=booking.confirmed_booking_id,
                    patient_id=state.patient.id,
                    patient_name=state.patient.full_name or None,
                    patient_phone=state.patient.phone,
                    patient_email=state.patient.email,
                    appointment_type=booking.display_name,
                    slot_time=booking.selected_slot.time,
                    created_at=datetime.now(UTC),
                ))
        except Exception:
            logger.exception(
                "Failed to write booking record %s (call %s)",
                booking.confirmed_booking_id, state.call_id,
            )
