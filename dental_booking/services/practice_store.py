"""Read-only access to practice configuration.

The tables are maintained by the practice admin tooling; this service
only reads them.  The interesting query is :meth:`PracticeStore.get_slot_search_params`,
an inner join that yields the providers allowed to perform an appointment
type and the operatories those providers work in.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy import Boolean, Column, ForeignKey, Integer, String, Table, Text, select
from sqlalchemy.orm import Mapped, Session, mapped_column, sessionmaker

from dental_booking.errors import ConfigurationError
from dental_booking.services.database import Base

logger = logging.getLogger(__name__)


# ── Tables ───────────────────────────────────────────────────────────

provider_appointment_types = Table(
    "provider_appointment_types",
    Base.metadata,
    Column("provider_id", ForeignKey("providers.id"), primary_key=True),
    Column("appointment_type_id", ForeignKey("appointment_types.id"), primary_key=True),
)

provider_operatories = Table(
    "provider_operatories",
    Base.metadata,
    Column("provider_id", ForeignKey("providers.id"), primary_key=True),
    Column("operatory_id", ForeignKey("operatories.id"), primary_key=True),
)


class PracticeRow(Base):
    __tablename__ = "practices"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(200))
    timezone: Mapped[str | None] = mapped_column(String(64))
    phone: Mapped[str | None] = mapped_column(String(32))
    nexhealth_subdomain: Mapped[str | None] = mapped_column(String(100))
    nexhealth_location_id: Mapped[int | None] = mapped_column(Integer)
    assistant_id: Mapped[str | None] = mapped_column(String(100), unique=True, index=True)
    # Comma separated, e.g. "Delta Dental, Cigna, Aetna"
    accepted_insurances: Mapped[str | None] = mapped_column(Text)


class AppointmentTypeRow(Base):
    __tablename__ = "appointment_types"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    practice_id: Mapped[str] = mapped_column(ForeignKey("practices.id"), index=True)
    nexhealth_appointment_type_id: Mapped[int | None] = mapped_column(Integer)
    name: Mapped[str] = mapped_column(String(200))
    spoken_name: Mapped[str | None] = mapped_column(String(200))
    duration: Mapped[int] = mapped_column(Integer)
    keywords: Mapped[str | None] = mapped_column(Text)
    bookable_online: Mapped[bool] = mapped_column(Boolean, default=True)
    check_immediate_next_available: Mapped[bool] = mapped_column(Boolean, default=False)


class ProviderRow(Base):
    __tablename__ = "providers"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    practice_id: Mapped[str] = mapped_column(ForeignKey("practices.id"), index=True)
    nexhealth_provider_id: Mapped[int] = mapped_column(Integer)
    first_name: Mapped[str | None] = mapped_column(String(100))
    last_name: Mapped[str | None] = mapped_column(String(100))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)


class OperatoryRow(Base):
    __tablename__ = "operatories"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    practice_id: Mapped[str] = mapped_column(ForeignKey("practices.id"), index=True)
    nexhealth_operatory_id: Mapped[int] = mapped_column(Integer)
    name: Mapped[str | None] = mapped_column(String(100))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)


# ── Value objects handed to the scheduling core ─────────────────────


@dataclass(frozen=True)
class PracticeContext:
    id: str
    name: str
    timezone: str
    subdomain: str
    location_id: int
    phone: str | None = None
    accepted_insurances: tuple[str, ...] = ()

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)


@dataclass(frozen=True)
class AppointmentTypeConfig:
    id: str
    name: str
    duration: int
    spoken_name: str | None = None
    keywords: str | None = None
    check_immediate_next_available: bool = False
    nexhealth_id: int | None = None

    @property
    def display_name(self) -> str:
        return self.spoken_name or self.name


@dataclass(frozen=True)
class SlotSearchParams:
    duration: int
    provider_ids: list[int] = field(default_factory=list)
    operatory_ids: list[int] = field(default_factory=list)


def split_insurances(raw: str | None) -> tuple[str, ...]:
    if not raw:
        return ()
    return tuple(part.strip() for part in raw.split(",") if part.strip())


# ── Store ────────────────────────────────────────────────────────────


class PracticeStore:
    """Read-only queries over the practice configuration tables."""

    def __init__(self, session_factory: sessionmaker[Session], default_timezone: str):
        self._session_factory = session_factory
        self._default_timezone = default_timezone

    def get_practice(self, practice_id: str) -> PracticeContext:
        """Load a practice, failing if it cannot talk to NexHealth."""
        with self._session_factory() as session:
            row = session.get(PracticeRow, practice_id)
        if row is None:
            raise ConfigurationError(f"Unknown practice {practice_id!r}")
        if not row.nexhealth_subdomain or row.nexhealth_location_id is None:
            raise ConfigurationError(
                f"Practice {practice_id} is missing its NexHealth subdomain or location id",
            )
        return PracticeContext(
            id=row.id,
            name=row.name,
            timezone=self._resolve_timezone(row),
            subdomain=row.nexhealth_subdomain,
            location_id=row.nexhealth_location_id,
            phone=row.phone,
            accepted_insurances=split_insurances(row.accepted_insurances),
        )

    def find_practice_id_for_assistant(self, assistant_id: str) -> str | None:
        with self._session_factory() as session:
            return session.scalar(
                select(PracticeRow.id).where(PracticeRow.assistant_id == assistant_id),
            )

    def list_appointment_types(self, practice_id: str) -> list[AppointmentTypeConfig]:
        """All appointment types that may be booked over the phone."""
        with self._session_factory() as session:
            rows = session.scalars(
                select(AppointmentTypeRow)
                .where(
                    AppointmentTypeRow.practice_id == practice_id,
                    AppointmentTypeRow.bookable_online.is_(True),
                )
                .order_by(AppointmentTypeRow.name),
            ).all()
        return [_to_appointment_type(row) for row in rows]

    def get_appointment_type(
        self, practice_id: str, appointment_type_id: str,
    ) -> AppointmentTypeConfig:
        with self._session_factory() as session:
            row = session.get(AppointmentTypeRow, appointment_type_id)
        if row is None or row.practice_id != practice_id:
            raise ConfigurationError(
                f"Appointment type {appointment_type_id!r} not configured "
                f"for practice {practice_id}",
            )
        return _to_appointment_type(row)

    def get_slot_search_params(
        self, practice_id: str, appointment_type_id: str,
    ) -> SlotSearchParams:
        """Active providers for the type, and active operatories they use.

        Raises :class:`ConfigurationError` when either set comes back empty.
        """
        appointment_type = self.get_appointment_type(practice_id, appointment_type_id)

        with self._session_factory() as session:
            provider_rows = session.execute(
                select(ProviderRow.id, ProviderRow.nexhealth_provider_id)
                .join(
                    provider_appointment_types,
                    provider_appointment_types.c.provider_id == ProviderRow.id,
                )
                .where(
                    provider_appointment_types.c.appointment_type_id == appointment_type_id,
                    ProviderRow.practice_id == practice_id,
                    ProviderRow.is_active.is_(True),
                )
                .order_by(ProviderRow.nexhealth_provider_id),
            ).all()
            if not provider_rows:
                raise ConfigurationError(
                    f"No active providers accept appointment type {appointment_type_id}",
                )

            operatory_ids = session.scalars(
                select(OperatoryRow.nexhealth_operatory_id)
                .join(
                    provider_operatories,
                    provider_operatories.c.operatory_id == OperatoryRow.id,
                )
                .where(
                    provider_operatories.c.provider_id.in_([r.id for r in provider_rows]),
                    OperatoryRow.practice_id == practice_id,
                    OperatoryRow.is_active.is_(True),
                )
                .distinct()
                .order_by(OperatoryRow.nexhealth_operatory_id),
            ).all()
            if not operatory_ids:
                raise ConfigurationError(
                    f"No active operatories assigned to providers of {appointment_type_id}",
                )

        return SlotSearchParams(
            duration=appointment_type.duration,
            provider_ids=sorted({r.nexhealth_provider_id for r in provider_rows}),
            operatory_ids=list(operatory_ids),
        )

    def primary_provider_id(
        self, practice_id: str, appointment_type_id: str | None = None,
    ) -> int:
        """Provider new patients are registered under.

        Prefers a provider who performs *appointment_type_id*, else the first
        active provider of the practice.
        """
        if appointment_type_id:
            return self.get_slot_search_params(practice_id, appointment_type_id).provider_ids[0]
        with self._session_factory() as session:
            provider_id = session.scalar(
                select(ProviderRow.nexhealth_provider_id)
                .where(ProviderRow.practice_id == practice_id, ProviderRow.is_active.is_(True))
                .order_by(ProviderRow.nexhealth_provider_id)
                .limit(1),
            )
        if provider_id is None:
            raise ConfigurationError(f"Practice {practice_id} has no active providers")
        return provider_id

    def _resolve_timezone(self, row: PracticeRow) -> str:
        if row.timezone:
            try:
                ZoneInfo(row.timezone)
                return row.timezone
            except (ZoneInfoNotFoundError, ValueError):
                logger.warning(
                    "Practice %s has invalid timezone %r; using %s",
                    row.id, row.timezone, self._default_timezone,
                )
        return self._default_timezone


def _to_appointment_type(row: AppointmentTypeRow) -> AppointmentTypeConfig:
    return AppointmentTypeConfig(
        id=row.id,
        name=row.name,
        duration=row.duration,
        spoken_name=row.spoken_name,
        keywords=row.keywords,
        check_immediate_next_available=bool(row.check_immediate_next_available),
        nexhealth_id=row.nexhealth_appointment_type_id,
    )
