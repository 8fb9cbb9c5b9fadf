"""
Fuel catalog: listing, moderator edits, soft delete and card images.
"""

from __future__ import annotations

import logging
from typing import Optional

from fuelcalc.db import DbClient, FuelRecord
from fuelcalc.errors import NotFoundError, ValidationError
from fuelcalc.storage import StorageClient

logger = logging.getLogger(__name__)

FUEL_FIELDS = (
    "title",
    "heat",
    "molar_mass",
    "density",
    "short_desc",
    "full_desc",
    "is_gas",
)
NON_NULLABLE_FIELDS = ("title", "heat", "is_gas")


class FuelCatalog:
    def __init__(self, db: DbClient, storage: StorageClient):
        self.db = db
        self.storage = storage

    def list(self, title: Optional[str] = None) -> list[FuelRecord]:
        return self.db.list_fuels(title=title.strip() if title else None)

    def get(self, fuel_id: int) -> FuelRecord:
        fuel = self.db.get_fuel(fuel_id)
        if not fuel:
            raise NotFoundError(f"fuel {fuel_id} not found")
        return fuel

    def create(self, fields: dict) -> FuelRecord:
        title = (fields.get("title") or "").strip()
        if not title:
            raise ValidationError("fuel title is required")
        if fields.get("heat") is None:
            raise ValidationError("fuel heat is required")
        values = {key: fields[key] for key in FUEL_FIELDS if key in fields}
        values["title"] = title
        values["is_gas"] = bool(values.get("is_gas", False))
        fuel = self.db.create_fuel(**values)
        logger.info("Created fuel %s (%s)", fuel.id, fuel.title)
        return fuel

    def update(self, fuel_id: int, fields: dict) -> FuelRecord:
        """
        Apply a partial update.

        ``fields`` holds only the keys the client actually sent, so an explicit
        ``0`` or ``False`` is written while absent keys are left alone.
        """
        updates = {key: fields[key] for key in FUEL_FIELDS if key in fields}
        if not updates:
            raise ValidationError("no fields to update")
        for key in NON_NULLABLE_FIELDS:
            if key in updates and updates[key] is None:
                raise ValidationError(f"{key} cannot be null")
        if "title" in updates:
            updates["title"] = updates["title"].strip()
            if not updates["title"]:
                raise ValidationError("fuel title cannot be empty")

        fuel = self.db.update_fuel(fuel_id, updates)
        if not fuel:
            raise NotFoundError(f"fuel {fuel_id} not found")
        return fuel

    def _drop_image(self, fuel: FuelRecord) -> None:
        if not fuel.card_image:
            return
        try:
            self.storage.delete(fuel.card_image)
        except Exception:
            logger.exception("Failed to delete image for fuel %s", fuel.id)

    def delete(self, fuel_id: int) -> None:
        fuel = self.get(fuel_id)
        self._drop_image(fuel)
        if not self.db.mark_fuel_deleted(fuel_id):
            raise NotFoundError(f"fuel {fuel_id} not found")
        logger.info("Soft-deleted fuel %s", fuel_id)

    def upload_image(
        self, fuel_id: int, filename: str, data: bytes, content_type: str
    ) -> FuelRecord:
        if not data:
            raise ValidationError("image file is required")
        fuel = self.get(fuel_id)

        name = f"fuel_{fuel_id}_{filename or 'image'}"
        reference = self.storage.upload_bytes(name, data, content_type)
        # Same name as before means the old object was overwritten in place.
        overwritten = fuel.card_image == reference
        try:
            updated = self.db.update_fuel(fuel_id, {"card_image": reference})
        except Exception:
            if not overwritten:
                self.storage.delete(reference)
            raise
        if not updated:
            if not overwritten:
                self.storage.delete(reference)
            raise NotFoundError(f"fuel {fuel_id} not found")
        if not overwritten:
            self._drop_image(fuel)
        return updated
