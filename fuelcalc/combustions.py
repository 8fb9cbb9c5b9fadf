"""
Combustion request lifecycle: the buyer's draft ("cart"), submission,
moderation and soft delete.

    draft -> submitted -> completed | rejected
    draft | submitted -> deleted

Every status change is a conditional update on the expected source status,
so two concurrent transitions of the same request cannot both win.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

from fuelcalc.db import CombustionRecord, DbClient, FuelRecord, LinkRecord
from fuelcalc.errors import (
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from fuelcalc.types import RequestStatus

logger = logging.getLogger(__name__)

DATE_FORMAT = "%d.%m.%Y"
DELETABLE_STATUSES = (RequestStatus.DRAFT, RequestStatus.SUBMITTED)


@dataclass
class CombustionDetail:
    request: CombustionRecord
    fuels: list[tuple[LinkRecord, FuelRecord]] = field(default_factory=list)


def parse_day(value: Optional[str], *, end_of_day: bool = False) -> Optional[float]:
    """Parse a DD.MM.YYYY filter bound into an epoch timestamp."""
    if not value:
        return None
    try:
        day = datetime.strptime(value, DATE_FORMAT)
    except ValueError:
        raise ValidationError(f"invalid date {value!r}, expected DD.MM.YYYY")
    if end_of_day:
        day = day + timedelta(days=1) - timedelta(microseconds=1)
    return day.timestamp()


class CombustionService:
    def __init__(self, db: DbClient, default_molar_volume: float = 22.414):
        self.db = db
        self.default_molar_volume = default_molar_volume
        # Serialises draft lookup-then-create within this process.
        self._draft_lock = threading.Lock()

    def _load(self, request_id: int) -> CombustionRecord:
        record = self.db.get_request(request_id)
        if not record or record.status == RequestStatus.DELETED:
            raise NotFoundError(f"combustion request {request_id} not found")
        return record

    def _load_owned(self, request_id: int, user_id: Optional[int]) -> CombustionRecord:
        record = self._load(request_id)
        if user_id is not None and record.creator_id != user_id:
            raise ForbiddenError("request belongs to another user")
        return record

    @staticmethod
    def _require_draft(record: CombustionRecord) -> None:
        if record.status != RequestStatus.DRAFT:
            raise InvalidStateError(
                f"request {record.id} is '{record.status.value}', only drafts can be edited"
            )

    def _require_current_draft(self, creator_id: int) -> CombustionRecord:
        draft = self.db.find_draft(creator_id)
        if not draft:
            raise NotFoundError("no active draft")
        return draft

    # Draft editing

    def get_or_create_draft(self, creator_id: int) -> CombustionRecord:
        with self._draft_lock:
            draft = self.db.find_draft(creator_id)
            if draft:
                return draft
            draft = self.db.create_request(creator_id, self.default_molar_volume)
            logger.info("Created draft %s for user %s", draft.id, creator_id)
            return draft

    def add_fuel(
        self, creator_id: int, fuel_id: int, fuel_volume: float = 0.0
    ) -> LinkRecord:
        if fuel_volume < 0:
            raise ValidationError("fuel_volume must be >= 0")
        if not self.db.get_fuel(fuel_id):
            raise NotFoundError(f"fuel {fuel_id} not found")
        draft = self.get_or_create_draft(creator_id)
        link = self.db.create_link(draft.id, fuel_id, fuel_volume)
        if not link:
            raise ValidationError(f"fuel {fuel_id} is already in the draft")
        self.db.update_request(draft.id)
        return link

    def remove_fuel(self, creator_id: int, fuel_id: int) -> None:
        draft = self._require_current_draft(creator_id)
        if not self.db.delete_link(draft.id, fuel_id):
            raise NotFoundError(f"fuel {fuel_id} is not in the draft")
        self.db.update_request(draft.id)

    def update_fuel_volume(
        self, creator_id: int, fuel_id: int, fuel_volume: float
    ) -> LinkRecord:
        if fuel_volume < 0:
            raise ValidationError("fuel_volume must be >= 0")
        draft = self._require_current_draft(creator_id)
        if not self.db.update_link_volume(draft.id, fuel_id, fuel_volume):
            raise NotFoundError(f"fuel {fuel_id} is not in the draft")
        self.db.update_request(draft.id)
        return self.db.get_link(draft.id, fuel_id)

    def set_molar_volume(
        self, request_id: int, molar_volume: float, user_id: Optional[int] = None
    ) -> CombustionRecord:
        if molar_volume is None or molar_volume <= 0:
            raise ValidationError("molar_volume must be a positive number")
        record = self._load_owned(request_id, user_id)
        self._require_draft(record)
        if not self.db.transition_request(
            request_id,
            (RequestStatus.DRAFT,),
            RequestStatus.DRAFT,
            molar_volume=molar_volume,
        ):
            raise InvalidStateError(f"request {request_id} is no longer a draft")
        return self.db.get_request(request_id)

    # Transitions

    def submit(self, request_id: int, user_id: Optional[int] = None) -> CombustionRecord:
        record = self._load_owned(request_id, user_id)
        self._require_draft(record)
        _, total = self.db.count_links(request_id)
        if total == 0:
            raise ValidationError("add at least one fuel before submitting")
        if not record.molar_volume or record.molar_volume <= 0:
            raise ValidationError("molar_volume must be set before submitting")
        if not self.db.transition_request(
            request_id, (RequestStatus.DRAFT,), RequestStatus.SUBMITTED
        ):
            raise InvalidStateError(f"request {request_id} is no longer a draft")
        logger.info("Request %s submitted with %d fuel(s)", request_id, total)
        return self.db.get_request(request_id)

    def moderate(
        self, request_id: int, moderator_id: int, approve: bool
    ) -> CombustionRecord:
        """
        Manual moderator decision. Completion here does not compute
        ``final_result``; only the calculation callback path does.
        """
        record = self._load(request_id)
        target = RequestStatus.COMPLETED if approve else RequestStatus.REJECTED
        if record.status != RequestStatus.SUBMITTED or not self.db.transition_request(
            request_id,
            (RequestStatus.SUBMITTED,),
            target,
            moderator_id=moderator_id,
            date_finish=time.time(),
        ):
            raise InvalidStateError(
                f"request {request_id} is '{record.status.value}', only submitted requests can be moderated"
            )
        logger.info(
            "Request %s %s by moderator %s", request_id, target.value, moderator_id
        )
        return self.db.get_request(request_id)

    def delete(self, request_id: int, user_id: Optional[int] = None) -> None:
        record = self._load_owned(request_id, user_id)
        if record.status not in DELETABLE_STATUSES or not self.db.transition_request(
            request_id, DELETABLE_STATUSES, RequestStatus.DELETED
        ):
            raise InvalidStateError(
                f"request {request_id} is '{record.status.value}' and cannot be deleted"
            )
        logger.info("Request %s soft-deleted", request_id)

    def delete_current_draft(self, creator_id: int) -> None:
        draft = self._require_current_draft(creator_id)
        self.delete(draft.id, creator_id)

    # Queries

    def get(
        self, request_id: int, user_id: Optional[int] = None, is_moderator: bool = False
    ) -> CombustionDetail:
        record = self._load_owned(request_id, None if is_moderator else user_id)
        return CombustionDetail(
            request=record, fuels=self.db.list_request_fuels(request_id)
        )

    def list(
        self,
        user_id: int,
        is_moderator: bool = False,
        status: Optional[str] = None,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
    ) -> list[CombustionRecord]:
        try:
            status_filter = RequestStatus(status) if status else None
        except ValueError:
            raise ValidationError(f"unknown status {status!r}")
        return self.db.list_requests(
            creator_id=None if is_moderator else user_id,
            status=status_filter,
            created_from=parse_day(start_date),
            created_to=parse_day(end_date, end_of_day=True),
        )

    def cart_icon(self, user_id: Optional[int]) -> tuple[int, int]:
        """Return (draft id, number of fuels in it), zeros when there is no draft."""
        if not user_id:
            return 0, 0
        draft = self.db.find_draft(user_id)
        if not draft:
            return 0, 0
        _, total = self.db.count_links(draft.id)
        return draft.id, total
