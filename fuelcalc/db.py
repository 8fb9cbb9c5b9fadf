"""
Database abstraction for Postgres and an in-memory test implementation.
"""

from __future__ import annotations

import itertools
import threading
import time
from dataclasses import asdict, dataclass, field
from typing import Dict, Iterable, Optional, Protocol

from sqlalchemy import (
    Boolean,
    Column,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    create_engine,
    func,
)
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from fuelcalc.errors import InvalidStateError
from fuelcalc.types import CalculationStatus, RequestStatus


class DbClient(Protocol):
    """Interface for database access."""

    # Fuels
    def list_fuels(self, title: Optional[str] = None) -> list["FuelRecord"]:
        ...

    def get_fuel(
        self, fuel_id: int, *, include_deleted: bool = False
    ) -> Optional["FuelRecord"]:
        ...

    def create_fuel(self, **fields) -> "FuelRecord":
        ...

    def update_fuel(self, fuel_id: int, updates: dict) -> Optional["FuelRecord"]:
        ...

    def mark_fuel_deleted(self, fuel_id: int) -> bool:
        ...

    # Combustion requests
    def create_request(
        self, creator_id: int, molar_volume: float
    ) -> "CombustionRecord":
        ...

    def get_request(self, request_id: int) -> Optional["CombustionRecord"]:
        ...

    def find_draft(self, creator_id: int) -> Optional["CombustionRecord"]:
        ...

    def list_requests(
        self,
        *,
        creator_id: Optional[int] = None,
        status: Optional[RequestStatus] = None,
        created_from: Optional[float] = None,
        created_to: Optional[float] = None,
    ) -> list["CombustionRecord"]:
        ...

    def update_request(self, request_id: int, **fields) -> bool:
        ...

    def transition_request(
        self,
        request_id: int,
        from_statuses: Iterable[RequestStatus],
        to_status: RequestStatus,
        **fields,
    ) -> bool:
        ...

    def start_calculation(
        self, request_id: int, token: str, moderator_id: Optional[int] = None
    ) -> bool:
        ...

    def complete_calculation(
        self, request_id: int, moderator_id: int, final_result: float
    ) -> bool:
        ...

    def get_moderator_id(self, request_id: int) -> Optional[int]:
        ...

    # Request <-> fuel links. Writes raise InvalidStateError unless the
    # request is a draft.
    def create_link(
        self, request_id: int, fuel_id: int, fuel_volume: float = 0.0
    ) -> Optional["LinkRecord"]:
        ...

    def get_link(self, request_id: int, fuel_id: int) -> Optional["LinkRecord"]:
        ...

    def list_request_fuels(
        self, request_id: int
    ) -> list[tuple["LinkRecord", "FuelRecord"]]:
        ...

    def update_link_volume(
        self, request_id: int, fuel_id: int, fuel_volume: float
    ) -> bool:
        ...

    def delete_link(self, request_id: int, fuel_id: int) -> bool:
        ...

    def record_partial_energy(
        self, request_id: int, fuel_id: int, energy: float
    ) -> bool:
        ...

    def count_links(self, request_id: int) -> tuple[int, int]:
        ...

    def sum_partial_energies(self, request_id: int) -> float:
        ...

    # Users
    def create_user(
        self, login: str, password_hash: str, name: str, is_moderator: bool
    ) -> Optional["UserRecord"]:
        ...

    def get_user(self, user_id: int) -> Optional["UserRecord"]:
        ...

    def get_user_by_login(self, login: str) -> Optional["UserRecord"]:
        ...

    def update_user(self, user_id: int, updates: dict) -> Optional["UserRecord"]:
        ...


@dataclass
class FuelRecord:
    id: int
    title: str
    heat: float
    molar_mass: Optional[float] = None
    density: Optional[float] = None
    card_image: Optional[str] = None
    short_desc: Optional[str] = None
    full_desc: Optional[str] = None
    is_gas: bool = False
    is_delete: bool = False

    def as_dict(self) -> dict:
        return asdict(self)


@dataclass
class CombustionRecord:
    id: int
    status: RequestStatus
    creator_id: int
    molar_volume: Optional[float] = 22.414
    moderator_id: Optional[int] = None
    final_result: Optional[float] = None
    async_token: Optional[str] = None
    calculation_status: CalculationStatus = CalculationStatus.IDLE
    date_create: float = field(default_factory=lambda: time.time())
    date_update: float = field(default_factory=lambda: time.time())
    date_finish: Optional[float] = None

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "status": self.status.value,
            "creator_id": self.creator_id,
            "moderator_id": self.moderator_id,
            "molar_volume": self.molar_volume,
            "final_result": self.final_result,
            "calculation_status": self.calculation_status.value,
            "date_create": self.date_create,
            "date_update": self.date_update,
            "date_finish": self.date_finish,
        }


@dataclass
class LinkRecord:
    id: int
    request_id: int
    fuel_id: int
    fuel_volume: float = 0.0
    intermediate_energy: Optional[float] = None
    is_calculated: bool = False


@dataclass
class UserRecord:
    id: int
    login: str
    password_hash: str
    name: str = ""
    is_moderator: bool = False

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "login": self.login,
            "name": self.name,
            "is_moderator": self.is_moderator,
        }


def _in_range(value: float, low: Optional[float], high: Optional[float]) -> bool:
    if low is not None and value < low:
        return False
    if high is not None and value > high:
        return False
    return True


class InMemoryDbClient:
    """
    Simple in-memory database for development and tests.

    Every operation runs under one re-entrant lock so the conditional
    updates behave like single-row SQL updates.
    """

    def __init__(self):
        self.fuels: Dict[int, FuelRecord] = {}
        self.requests: Dict[int, CombustionRecord] = {}
        self.links: Dict[int, LinkRecord] = {}
        self.users: Dict[int, UserRecord] = {}
        self._ids = {
            name: itertools.count(1)
            for name in ("fuels", "requests", "links", "users")
        }
        self._lock = threading.RLock()

    def _next_id(self, table: str) -> int:
        return next(self._ids[table])

    def reset(self) -> None:
        """Clear all stored data (useful in tests)."""
        with self._lock:
            self.fuels.clear()
            self.requests.clear()
            self.links.clear()
            self.users.clear()

    # Fuels

    def list_fuels(self, title: Optional[str] = None) -> list[FuelRecord]:
        needle = (title or "").lower()
        with self._lock:
            return [
                FuelRecord(**asdict(fuel))
                for fuel in self.fuels.values()
                if not fuel.is_delete and needle in fuel.title.lower()
            ]

    def get_fuel(
        self, fuel_id: int, *, include_deleted: bool = False
    ) -> Optional[FuelRecord]:
        with self._lock:
            fuel = self.fuels.get(fuel_id)
            if not fuel or (fuel.is_delete and not include_deleted):
                return None
            return FuelRecord(**asdict(fuel))

    def create_fuel(self, **fields) -> FuelRecord:
        with self._lock:
            fuel = FuelRecord(id=self._next_id("fuels"), **fields)
            self.fuels[fuel.id] = fuel
            return FuelRecord(**asdict(fuel))

    def update_fuel(self, fuel_id: int, updates: dict) -> Optional[FuelRecord]:
        with self._lock:
            fuel = self.fuels.get(fuel_id)
            if not fuel or fuel.is_delete:
                return None
            for key, value in updates.items():
                setattr(fuel, key, value)
            return FuelRecord(**asdict(fuel))

    def mark_fuel_deleted(self, fuel_id: int) -> bool:
        with self._lock:
            fuel = self.fuels.get(fuel_id)
            if not fuel or fuel.is_delete:
                return False
            fuel.is_delete = True
            return True

    # Combustion requests

    def create_request(self, creator_id: int, molar_volume: float) -> CombustionRecord:
        with self._lock:
            record = CombustionRecord(
                id=self._next_id("requests"),
                status=RequestStatus.DRAFT,
                creator_id=creator_id,
                molar_volume=molar_volume,
            )
            self.requests[record.id] = record
            return CombustionRecord(**asdict(record))

    def get_request(self, request_id: int) -> Optional[CombustionRecord]:
        with self._lock:
            record = self.requests.get(request_id)
            return CombustionRecord(**asdict(record)) if record else None

    def find_draft(self, creator_id: int) -> Optional[CombustionRecord]:
        with self._lock:
            for record in self.requests.values():
                if (
                    record.creator_id == creator_id
                    and record.status == RequestStatus.DRAFT
                ):
                    return CombustionRecord(**asdict(record))
        return None

    def list_requests(
        self,
        *,
        creator_id: Optional[int] = None,
        status: Optional[RequestStatus] = None,
        created_from: Optional[float] = None,
        created_to: Optional[float] = None,
    ) -> list[CombustionRecord]:
        with self._lock:
            items = []
            for record in self.requests.values():
                if creator_id is not None and record.creator_id != creator_id:
                    continue
                if status is not None and record.status != status:
                    continue
                if status is None and record.status == RequestStatus.DELETED:
                    continue
                if not _in_range(record.date_create, created_from, created_to):
                    continue
                items.append(CombustionRecord(**asdict(record)))
            return sorted(items, key=lambda r: r.date_create, reverse=True)

    def update_request(self, request_id: int, **fields) -> bool:
        with self._lock:
            record = self.requests.get(request_id)
            if not record:
                return False
            for key, value in fields.items():
                setattr(record, key, value)
            record.date_update = time.time()
            return True

    def transition_request(
        self,
        request_id: int,
        from_statuses: Iterable[RequestStatus],
        to_status: RequestStatus,
        **fields,
    ) -> bool:
        with self._lock:
            record = self.requests.get(request_id)
            if not record or record.status not in tuple(from_statuses):
                return False
            record.status = to_status
            return self.update_request(request_id, **fields)

    def start_calculation(
        self, request_id: int, token: str, moderator_id: Optional[int] = None
    ) -> bool:
        with self._lock:
            record = self.requests.get(request_id)
            if not record or record.status != RequestStatus.SUBMITTED:
                return False
            record.async_token = token
            record.calculation_status = CalculationStatus.PROCESSING
            if moderator_id is not None:
                record.moderator_id = moderator_id
            record.date_update = time.time()
            return True

    def complete_calculation(
        self, request_id: int, moderator_id: int, final_result: float
    ) -> bool:
        with self._lock:
            record = self.requests.get(request_id)
            if (
                not record
                or record.status != RequestStatus.SUBMITTED
                or record.calculation_status != CalculationStatus.PROCESSING
            ):
                return False
            now = time.time()
            record.status = RequestStatus.COMPLETED
            record.calculation_status = CalculationStatus.COMPLETED
            record.moderator_id = moderator_id
            record.final_result = final_result
            record.date_finish = now
            record.date_update = now
            return True

    def get_moderator_id(self, request_id: int) -> Optional[int]:
        with self._lock:
            record = self.requests.get(request_id)
            return record.moderator_id if record else None

    # Links

    def _find_link(self, request_id: int, fuel_id: int) -> Optional[LinkRecord]:
        for link in self.links.values():
            if link.request_id == request_id and link.fuel_id == fuel_id:
                return link
        return None

    def _require_draft(self, request_id: int) -> None:
        record = self.requests.get(request_id)
        if not record or record.status != RequestStatus.DRAFT:
            raise InvalidStateError(f"request {request_id} is not a draft")

    def create_link(
        self, request_id: int, fuel_id: int, fuel_volume: float = 0.0
    ) -> Optional[LinkRecord]:
        with self._lock:
            self._require_draft(request_id)
            if self._find_link(request_id, fuel_id):
                return None
            link = LinkRecord(
                id=self._next_id("links"),
                request_id=request_id,
                fuel_id=fuel_id,
                fuel_volume=fuel_volume,
            )
            self.links[link.id] = link
            return LinkRecord(**asdict(link))

    def get_link(self, request_id: int, fuel_id: int) -> Optional[LinkRecord]:
        with self._lock:
            link = self._find_link(request_id, fuel_id)
            return LinkRecord(**asdict(link)) if link else None

    def list_request_fuels(
        self, request_id: int
    ) -> list[tuple[LinkRecord, FuelRecord]]:
        with self._lock:
            return [
                (LinkRecord(**asdict(link)), FuelRecord(**asdict(self.fuels[link.fuel_id])))
                for link in sorted(self.links.values(), key=lambda l: l.id)
                if link.request_id == request_id and link.fuel_id in self.fuels
            ]

    def update_link_volume(
        self, request_id: int, fuel_id: int, fuel_volume: float
    ) -> bool:
        with self._lock:
            self._require_draft(request_id)
            link = self._find_link(request_id, fuel_id)
            if not link:
                return False
            link.fuel_volume = fuel_volume
            return True

    def delete_link(self, request_id: int, fuel_id: int) -> bool:
        with self._lock:
            self._require_draft(request_id)
            link = self._find_link(request_id, fuel_id)
            if not link:
                return False
            del self.links[link.id]
            return True

    def record_partial_energy(
        self, request_id: int, fuel_id: int, energy: float
    ) -> bool:
        with self._lock:
            link = self._find_link(request_id, fuel_id)
            if not link or link.is_calculated:
                return False
            link.intermediate_energy = energy
            link.is_calculated = True
            return True

    def count_links(self, request_id: int) -> tuple[int, int]:
        with self._lock:
            links = [l for l in self.links.values() if l.request_id == request_id]
            return sum(1 for l in links if l.is_calculated), len(links)

    def sum_partial_energies(self, request_id: int) -> float:
        with self._lock:
            return sum(
                link.intermediate_energy or 0.0
                for link in self.links.values()
                if link.request_id == request_id
            )

    # Users

    def create_user(
        self, login: str, password_hash: str, name: str, is_moderator: bool
    ) -> Optional[UserRecord]:
        with self._lock:
            if any(u.login == login for u in self.users.values()):
                return None
            user = UserRecord(
                id=self._next_id("users"),
                login=login,
                password_hash=password_hash,
                name=name,
                is_moderator=is_moderator,
            )
            self.users[user.id] = user
            return UserRecord(**asdict(user))

    def get_user(self, user_id: int) -> Optional[UserRecord]:
        with self._lock:
            user = self.users.get(user_id)
            return UserRecord(**asdict(user)) if user else None

    def get_user_by_login(self, login: str) -> Optional[UserRecord]:
        with self._lock:
            for user in self.users.values():
                if user.login == login:
                    return UserRecord(**asdict(user))
        return None

    def update_user(self, user_id: int, updates: dict) -> Optional[UserRecord]:
        with self._lock:
            user = self.users.get(user_id)
            if not user:
                return None
            login = updates.get("login")
            if login and any(
                u.login == login and u.id != user_id for u in self.users.values()
            ):
                return None
            for key, value in updates.items():
                setattr(user, key, value)
            return UserRecord(**asdict(user))


class PostgresDbClient:
    """
    SQLAlchemy-backed implementation. Accepts any SQLAlchemy URL (e.g., Postgres or SQLite for tests).
    """

    def __init__(self, database_url: str):
        if not database_url:
            raise ValueError("DATABASE_URL is required for PostgresDbClient")
        if database_url.startswith("sqlite") and ":memory:" in database_url:
            # One shared connection, otherwise each thread sees an empty database.
            self.engine = create_engine(
                database_url,
                future=True,
                poolclass=StaticPool,
                connect_args={"check_same_thread": False},
            )
        else:
            self.engine = create_engine(
                database_url,
                future=True,
                pool_pre_ping=True,
                pool_recycle=1800,
            )
        self.Session = sessionmaker(
            bind=self.engine, class_=Session, expire_on_commit=False, future=True
        )
        Base.metadata.create_all(self.engine)

    def _to_fuel_record(self, row: "FuelRow") -> FuelRecord:
        return FuelRecord(
            id=row.id,
            title=row.title,
            heat=row.heat,
            molar_mass=row.molar_mass,
            density=row.density,
            card_image=row.card_image,
            short_desc=row.short_desc,
            full_desc=row.full_desc,
            is_gas=row.is_gas,
            is_delete=row.is_delete,
        )

    def _to_request_record(self, row: "CombustionRow") -> CombustionRecord:
        return CombustionRecord(
            id=row.id,
            status=RequestStatus(row.status),
            creator_id=row.creator_id,
            molar_volume=row.molar_volume,
            moderator_id=row.moderator_id,
            final_result=row.final_result,
            async_token=row.async_token,
            calculation_status=CalculationStatus(row.calculation_status),
            date_create=row.date_create,
            date_update=row.date_update,
            date_finish=row.date_finish,
        )

    def _to_link_record(self, row: "LinkRow") -> LinkRecord:
        return LinkRecord(
            id=row.id,
            request_id=row.request_id,
            fuel_id=row.fuel_id,
            fuel_volume=row.fuel_volume,
            intermediate_energy=row.intermediate_energy,
            is_calculated=row.is_calculated,
        )

    def _to_user_record(self, row: "UserRow") -> UserRecord:
        return UserRecord(
            id=row.id,
            login=row.login,
            password_hash=row.password_hash,
            name=row.name or "",
            is_moderator=row.is_moderator,
        )

    # Fuels

    def list_fuels(self, title: Optional[str] = None) -> list[FuelRecord]:
        with self.Session() as session:
            query = session.query(FuelRow).filter(FuelRow.is_delete == False)
            if title:
                query = query.filter(
                    func.lower(FuelRow.title).contains(title.lower(), autoescape=True)
                )
            return [self._to_fuel_record(row) for row in query.order_by(FuelRow.id)]

    def get_fuel(
        self, fuel_id: int, *, include_deleted: bool = False
    ) -> Optional[FuelRecord]:
        with self.Session() as session:
            row = session.get(FuelRow, fuel_id)
            if not row or (row.is_delete and not include_deleted):
                return None
            return self._to_fuel_record(row)

    def create_fuel(self, **fields) -> FuelRecord:
        with self.Session() as session:
            row = FuelRow(**fields)
            session.add(row)
            session.commit()
            session.refresh(row)
            return self._to_fuel_record(row)

    def update_fuel(self, fuel_id: int, updates: dict) -> Optional[FuelRecord]:
        with self.Session() as session:
            row = session.get(FuelRow, fuel_id)
            if not row or row.is_delete:
                return None
            for key, value in updates.items():
                setattr(row, key, value)
            session.commit()
            session.refresh(row)
            return self._to_fuel_record(row)

    def mark_fuel_deleted(self, fuel_id: int) -> bool:
        with self.Session() as session:
            updated = (
                session.query(FuelRow)
                .filter(FuelRow.id == fuel_id, FuelRow.is_delete == False)
                .update({FuelRow.is_delete: True}, synchronize_session=False)
            )
            session.commit()
            return bool(updated)

    # Combustion requests

    def create_request(self, creator_id: int, molar_volume: float) -> CombustionRecord:
        now = time.time()
        with self.Session() as session:
            row = CombustionRow(
                status=RequestStatus.DRAFT.value,
                creator_id=creator_id,
                molar_volume=molar_volume,
                calculation_status=CalculationStatus.IDLE.value,
                date_create=now,
                date_update=now,
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return self._to_request_record(row)

    def get_request(self, request_id: int) -> Optional[CombustionRecord]:
        with self.Session() as session:
            row = session.get(CombustionRow, request_id)
            return self._to_request_record(row) if row else None

    def find_draft(self, creator_id: int) -> Optional[CombustionRecord]:
        with self.Session() as session:
            row = (
                session.query(CombustionRow)
                .filter(
                    CombustionRow.creator_id == creator_id,
                    CombustionRow.status == RequestStatus.DRAFT.value,
                )
                .order_by(CombustionRow.id.asc())
                .first()
            )
            return self._to_request_record(row) if row else None

    def list_requests(
        self,
        *,
        creator_id: Optional[int] = None,
        status: Optional[RequestStatus] = None,
        created_from: Optional[float] = None,
        created_to: Optional[float] = None,
    ) -> list[CombustionRecord]:
        with self.Session() as session:
            query = session.query(CombustionRow)
            if creator_id is not None:
                query = query.filter(CombustionRow.creator_id == creator_id)
            if status is not None:
                query = query.filter(CombustionRow.status == status.value)
            else:
                query = query.filter(
                    CombustionRow.status != RequestStatus.DELETED.value
                )
            if created_from is not None:
                query = query.filter(CombustionRow.date_create >= created_from)
            if created_to is not None:
                query = query.filter(CombustionRow.date_create <= created_to)
            rows = query.order_by(CombustionRow.date_create.desc()).all()
            return [self._to_request_record(row) for row in rows]

    @staticmethod
    def _column_values(fields: dict) -> dict:
        values = {}
        for key, value in fields.items():
            if isinstance(value, (RequestStatus, CalculationStatus)):
                value = value.value
            values[getattr(CombustionRow, key)] = value
        values[CombustionRow.date_update] = time.time()
        return values

    def update_request(self, request_id: int, **fields) -> bool:
        with self.Session() as session:
            updated = (
                session.query(CombustionRow)
                .filter(CombustionRow.id == request_id)
                .update(self._column_values(fields), synchronize_session=False)
            )
            session.commit()
            return bool(updated)

    def transition_request(
        self,
        request_id: int,
        from_statuses: Iterable[RequestStatus],
        to_status: RequestStatus,
        **fields,
    ) -> bool:
        values = self._column_values(dict(fields, status=to_status))
        with self.Session() as session:
            updated = (
                session.query(CombustionRow)
                .filter(
                    CombustionRow.id == request_id,
                    CombustionRow.status.in_([s.value for s in from_statuses]),
                )
                .update(values, synchronize_session=False)
            )
            session.commit()
            return updated == 1

    def start_calculation(
        self, request_id: int, token: str, moderator_id: Optional[int] = None
    ) -> bool:
        fields = {
            "async_token": token,
            "calculation_status": CalculationStatus.PROCESSING,
        }
        if moderator_id is not None:
            fields["moderator_id"] = moderator_id
        with self.Session() as session:
            updated = (
                session.query(CombustionRow)
                .filter(
                    CombustionRow.id == request_id,
                    CombustionRow.status == RequestStatus.SUBMITTED.value,
                )
                .update(self._column_values(fields), synchronize_session=False)
            )
            session.commit()
            return updated == 1

    def complete_calculation(
        self, request_id: int, moderator_id: int, final_result: float
    ) -> bool:
        now = time.time()
        with self.Session() as session:
            updated = (
                session.query(CombustionRow)
                .filter(
                    CombustionRow.id == request_id,
                    CombustionRow.status == RequestStatus.SUBMITTED.value,
                    CombustionRow.calculation_status
                    == CalculationStatus.PROCESSING.value,
                )
                .update(
                    {
                        CombustionRow.status: RequestStatus.COMPLETED.value,
                        CombustionRow.calculation_status: CalculationStatus.COMPLETED.value,
                        CombustionRow.moderator_id: moderator_id,
                        CombustionRow.final_result: final_result,
                        CombustionRow.date_finish: now,
                        CombustionRow.date_update: now,
                    },
                    synchronize_session=False,
                )
            )
            session.commit()
            return updated == 1

    def get_moderator_id(self, request_id: int) -> Optional[int]:
        with self.Session() as session:
            return (
                session.query(CombustionRow.moderator_id)
                .filter(CombustionRow.id == request_id)
                .scalar()
            )

    # Links

    def _claim_draft(self, session: Session, request_id: int) -> None:
        """
        Touch the request only while it is a draft. The row stays locked until
        the caller commits, so a concurrent status change waits for the link
        write instead of racing it.
        """
        claimed = (
            session.query(CombustionRow)
            .filter(
                CombustionRow.id == request_id,
                CombustionRow.status == RequestStatus.DRAFT.value,
            )
            .update(
                {CombustionRow.date_update: time.time()}, synchronize_session=False
            )
        )
        if claimed != 1:
            raise InvalidStateError(f"request {request_id} is not a draft")

    def create_link(
        self, request_id: int, fuel_id: int, fuel_volume: float = 0.0
    ) -> Optional[LinkRecord]:
        with self.Session() as session:
            self._claim_draft(session, request_id)
            row = LinkRow(
                request_id=request_id,
                fuel_id=fuel_id,
                fuel_volume=fuel_volume,
                is_calculated=False,
            )
            session.add(row)
            try:
                session.commit()
            except IntegrityError:
                session.rollback()
                return None
            session.refresh(row)
            return self._to_link_record(row)

    def _link_query(self, session: Session, request_id: int, fuel_id: int):
        return session.query(LinkRow).filter(
            LinkRow.request_id == request_id, LinkRow.fuel_id == fuel_id
        )

    def get_link(self, request_id: int, fuel_id: int) -> Optional[LinkRecord]:
        with self.Session() as session:
            row = self._link_query(session, request_id, fuel_id).one_or_none()
            return self._to_link_record(row) if row else None

    def list_request_fuels(
        self, request_id: int
    ) -> list[tuple[LinkRecord, FuelRecord]]:
        with self.Session() as session:
            rows = (
                session.query(LinkRow, FuelRow)
                .join(FuelRow, FuelRow.id == LinkRow.fuel_id)
                .filter(LinkRow.request_id == request_id)
                .order_by(LinkRow.id)
                .all()
            )
            return [
                (self._to_link_record(link), self._to_fuel_record(fuel))
                for link, fuel in rows
            ]

    def update_link_volume(
        self, request_id: int, fuel_id: int, fuel_volume: float
    ) -> bool:
        with self.Session() as session:
            self._claim_draft(session, request_id)
            updated = self._link_query(session, request_id, fuel_id).update(
                {LinkRow.fuel_volume: fuel_volume}, synchronize_session=False
            )
            session.commit()
            return bool(updated)

    def delete_link(self, request_id: int, fuel_id: int) -> bool:
        with self.Session() as session:
            self._claim_draft(session, request_id)
            deleted = self._link_query(session, request_id, fuel_id).delete(
                synchronize_session=False
            )
            session.commit()
            return bool(deleted)

    def record_partial_energy(
        self, request_id: int, fuel_id: int, energy: float
    ) -> bool:
        with self.Session() as session:
            updated = (
                self._link_query(session, request_id, fuel_id)
                .filter(LinkRow.is_calculated == False)
                .update(
                    {
                        LinkRow.intermediate_energy: energy,
                        LinkRow.is_calculated: True,
                    },
                    synchronize_session=False,
                )
            )
            session.commit()
            return updated == 1

    def count_links(self, request_id: int) -> tuple[int, int]:
        with self.Session() as session:
            total = (
                session.query(func.count(LinkRow.id))
                .filter(LinkRow.request_id == request_id)
                .scalar()
            )
            calculated = (
                session.query(func.count(LinkRow.id))
                .filter(
                    LinkRow.request_id == request_id,
                    LinkRow.is_calculated == True,
                )
                .scalar()
            )
            return int(calculated or 0), int(total or 0)

    def sum_partial_energies(self, request_id: int) -> float:
        with self.Session() as session:
            total = (
                session.query(func.sum(LinkRow.intermediate_energy))
                .filter(LinkRow.request_id == request_id)
                .scalar()
            )
            return float(total or 0.0)

    # Users

    def create_user(
        self, login: str, password_hash: str, name: str, is_moderator: bool
    ) -> Optional[UserRecord]:
        with self.Session() as session:
            row = UserRow(
                login=login,
                password_hash=password_hash,
                name=name,
                is_moderator=is_moderator,
            )
            session.add(row)
            try:
                session.commit()
            except IntegrityError:
                session.rollback()
                return None
            session.refresh(row)
            return self._to_user_record(row)

    def get_user(self, user_id: int) -> Optional[UserRecord]:
        with self.Session() as session:
            row = session.get(UserRow, user_id)
            return self._to_user_record(row) if row else None

    def get_user_by_login(self, login: str) -> Optional[UserRecord]:
        with self.Session() as session:
            row = session.query(UserRow).filter(UserRow.login == login).one_or_none()
            return self._to_user_record(row) if row else None

    def update_user(self, user_id: int, updates: dict) -> Optional[UserRecord]:
        with self.Session() as session:
            row = session.get(UserRow, user_id)
            if not row:
                return None
            for key, value in updates.items():
                setattr(row, key, value)
            try:
                session.commit()
            except IntegrityError:
                session.rollback()
                return None
            session.refresh(row)
            return self._to_user_record(row)


Base = declarative_base()


class UserRow(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    login = Column(String(100), nullable=False, unique=True)
    password_hash = Column(String(255), nullable=False)
    name = Column(String(200), nullable=True)
    is_moderator = Column(Boolean, nullable=False, default=False)


class FuelRow(Base):
    __tablename__ = "fuels"

    id = Column(Integer, primary_key=True, autoincrement=True)
    title = Column(String(100), nullable=False)
    heat = Column(Float, nullable=False)
    molar_mass = Column(Float, nullable=True)
    density = Column(Float, nullable=True)
    card_image = Column(String(255), nullable=True)
    short_desc = Column(String(200), nullable=True)
    full_desc = Column(Text, nullable=True)
    is_gas = Column(Boolean, nullable=False, default=False)
    is_delete = Column(Boolean, nullable=False, default=False, index=True)


class CombustionRow(Base):
    __tablename__ = "combustion_calculations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    status = Column(String(15), nullable=False, index=True)
    date_create = Column(Float, nullable=False)
    date_update = Column(Float, nullable=False)
    date_finish = Column(Float, nullable=True)
    creator_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    moderator_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    molar_volume = Column(Float, nullable=True, default=22.414)
    final_result = Column(Float, nullable=True)
    async_token = Column(String(128), nullable=True)
    calculation_status = Column(
        String(15), nullable=False, default=CalculationStatus.IDLE.value
    )


class LinkRow(Base):
    __tablename__ = "combustions_fuels"
    __table_args__ = (
        UniqueConstraint("request_id", "fuel_id", name="idx_request_fuel"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    request_id = Column(
        Integer, ForeignKey("combustion_calculations.id"), nullable=False, index=True
    )
    fuel_id = Column(Integer, ForeignKey("fuels.id"), nullable=False)
    fuel_volume = Column(Float, nullable=False, default=0.0)
    intermediate_energy = Column(Float, nullable=True)
    is_calculated = Column(Boolean, nullable=False, default=False)
