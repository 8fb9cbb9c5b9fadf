"""
HTTP client for the external combustion calculator.

The calculator accepts one job per fuel and later posts the intermediate
energy back to our callback URL, echoing the session token.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Optional, Protocol

import requests

from fuelcalc.errors import DownstreamError

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 30  # seconds
TOKEN_HEADER = "X-Service-Token"


@dataclass
class CalculationJob:
    combustion_id: int
    fuel_id: int
    fuel_volume: float
    heat: float
    molar_mass: Optional[float]
    density: Optional[float]
    is_gas: bool
    molar_volume: float
    callback_url: str

    def as_payload(self) -> dict:
        return asdict(self)


class CalculatorClient(Protocol):
    def submit(self, job: CalculationJob, token: str) -> None:
        ...


class HttpCalculatorClient:
    """POSTs jobs to the calculator's compute endpoint."""

    def __init__(self, url: str, timeout: float = REQUEST_TIMEOUT):
        self.url = url
        self.timeout = timeout

    def submit(self, job: CalculationJob, token: str) -> None:
        """
        Send one job. The token travels as a header, never in the body.

        Raises:
            DownstreamError: on transport failure or a non-2xx answer.
        """
        try:
            response = requests.post(
                self.url,
                json=job.as_payload(),
                headers={TOKEN_HEADER: token},
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise DownstreamError(f"calculator unreachable: {exc}") from exc

        if not response.ok:
            raise DownstreamError(
                f"calculator returned {response.status_code}: {response.text[:200]}"
            )
        logger.info(
            "Calculator accepted job combustion_id=%s fuel_id=%s",
            job.combustion_id,
            job.fuel_id,
        )
