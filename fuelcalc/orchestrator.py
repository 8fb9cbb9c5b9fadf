"""
Asynchronous calculation orchestration.

A session fans one job per linked fuel out to the external calculator and
returns immediately. The calculator posts each intermediate energy back via
``receive_result``; when the last link is calculated the request is moved to
``completed`` with the summed energy as its final result.

Completion is a single conditional update (``submitted``/``processing`` ->
``completed``/``completed``), so only one callback can ever complete a
request no matter how results interleave or repeat.
"""

from __future__ import annotations

import hmac
import logging
import math
import secrets
from dataclasses import dataclass
from typing import Optional

from fuelcalc.calculator import CalculationJob, CalculatorClient
from fuelcalc.db import CombustionRecord, DbClient
from fuelcalc.errors import (
    DownstreamError,
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from fuelcalc.types import RequestStatus
from fuelcalc.worker import TaskRunner

logger = logging.getLogger(__name__)


@dataclass
class SessionStart:
    combustion_id: int
    fuel_count: int
    molar_volume: float
    token: str
    callback_url: str


@dataclass
class CalculationResult:
    combustion_id: int
    fuel_id: int
    result: float
    token: str


@dataclass
class ResultAck:
    stored: bool
    completed: bool = False


@dataclass
class CombustionProgress:
    request: CombustionRecord
    calculated_count: int
    total_count: int


class CalculationOrchestrator:
    def __init__(
        self,
        db: DbClient,
        calculator: CalculatorClient,
        runner: TaskRunner,
        *,
        callback_url: str,
        fixed_token: Optional[str] = None,
        fallback_moderator_id: Optional[int] = None,
    ):
        self.db = db
        self.calculator = calculator
        self.runner = runner
        self.callback_url = callback_url
        self.fixed_token = fixed_token
        self.fallback_moderator_id = fallback_moderator_id

    def _session_token(self) -> str:
        return self.fixed_token or secrets.token_hex(16)

    def start_session(
        self, request_id: int, moderator_id: Optional[int] = None
    ) -> SessionStart:
        record = self.db.get_request(request_id)
        if not record:
            raise NotFoundError(f"combustion request {request_id} not found")
        if record.status != RequestStatus.SUBMITTED:
            raise InvalidStateError(
                f"request must be '{RequestStatus.SUBMITTED.value}', current status '{record.status.value}'"
            )

        fuels = self.db.list_request_fuels(request_id)
        if not fuels:
            raise ValidationError("request has no fuels")

        token = self._session_token()
        if not self.db.start_calculation(request_id, token, moderator_id):
            raise InvalidStateError(f"request {request_id} is no longer submitted")

        logger.info(
            "[combustion %s] starting calculation: %d fuel(s), molar volume %.4f",
            request_id,
            len(fuels),
            record.molar_volume,
        )
        for link, fuel in fuels:
            job = CalculationJob(
                combustion_id=request_id,
                fuel_id=fuel.id,
                fuel_volume=link.fuel_volume,
                heat=fuel.heat,
                molar_mass=fuel.molar_mass,
                density=fuel.density,
                is_gas=fuel.is_gas,
                molar_volume=record.molar_volume,
                callback_url=self.callback_url,
            )
            self.runner.submit(self._dispatch_task(job, token))

        return SessionStart(
            combustion_id=request_id,
            fuel_count=len(fuels),
            molar_volume=record.molar_volume,
            token=token,
            callback_url=self.callback_url,
        )

    def _dispatch_task(self, job: CalculationJob, token: str):
        def run() -> None:
            try:
                self.calculator.submit(job, token)
            except DownstreamError as exc:
                # No retry: the link stays uncalculated until a new session.
                logger.error(
                    "[combustion %s] calculator call for fuel %s failed: %s",
                    job.combustion_id,
                    job.fuel_id,
                    exc.description,
                )

        return run

    def receive_result(self, result: CalculationResult) -> ResultAck:
        """
        Accept one intermediate energy from the calculator.

        Raises ``ValidationError`` for a non-finite result and
        ``ForbiddenError`` if the token does not match the request's session
        token, both before touching anything. After that point every problem
        is logged and the result is still acknowledged.
        """
        if not math.isfinite(result.result):
            raise ValidationError("result must be a finite number")

        record = self.db.get_request(result.combustion_id)
        stored_token = record.async_token if record else None
        if not stored_token or not hmac.compare_digest(
            stored_token.encode(), (result.token or "").encode()
        ):
            logger.warning(
                "[combustion %s] rejected result for fuel %s: bad session token",
                result.combustion_id,
                result.fuel_id,
            )
            raise ForbiddenError("invalid session token")

        try:
            stored = self.db.record_partial_energy(
                result.combustion_id, result.fuel_id, result.result
            )
        except Exception:
            logger.exception(
                "[combustion %s] failed to store result for fuel %s",
                result.combustion_id,
                result.fuel_id,
            )
            return ResultAck(stored=False)

        if stored:
            logger.info(
                "[combustion %s] stored intermediate energy for fuel %s: %.4f",
                result.combustion_id,
                result.fuel_id,
                result.result,
            )
        elif self.db.get_link(result.combustion_id, result.fuel_id):
            logger.info(
                "[combustion %s] duplicate result for fuel %s ignored",
                result.combustion_id,
                result.fuel_id,
            )
        else:
            logger.warning(
                "[combustion %s] no link for fuel %s, result dropped",
                result.combustion_id,
                result.fuel_id,
            )

        try:
            completed = self._maybe_complete(record)
        except Exception:
            logger.exception(
                "[combustion %s] completion check failed", result.combustion_id
            )
            completed = False
        return ResultAck(stored=stored, completed=completed)

    def _resolve_moderator(self, record: CombustionRecord) -> Optional[int]:
        if record.moderator_id:
            return record.moderator_id
        moderator_id = self.db.get_moderator_id(record.id)
        if moderator_id:
            return moderator_id
        return self.fallback_moderator_id

    def _maybe_complete(self, record: CombustionRecord) -> bool:
        calculated, total = self.db.count_links(record.id)
        if total == 0 or calculated < total:
            return False

        final_result = self.db.sum_partial_energies(record.id)
        moderator_id = self._resolve_moderator(record)
        if not moderator_id:
            logger.warning(
                "[combustion %s] all %d results in but no moderator to complete it",
                record.id,
                total,
            )
            return False

        if not self.db.complete_calculation(record.id, moderator_id, final_result):
            # Already completed by an earlier callback, or moderated manually.
            return False
        logger.info(
            "[combustion %s] completed automatically (%d/%d), final result %.4f",
            record.id,
            calculated,
            total,
            final_result,
        )
        return True

    def get_progress(self, request_id: int) -> CombustionProgress:
        record = self.db.get_request(request_id)
        if not record:
            raise NotFoundError(f"combustion request {request_id} not found")
        calculated, total = self.db.count_links(request_id)
        return CombustionProgress(
            request=record, calculated_count=calculated, total_count=total
        )
