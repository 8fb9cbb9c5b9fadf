import unittest

from fuelcalc.db import InMemoryDbClient
from fuelcalc.errors import NotFoundError, ValidationError
from fuelcalc.fuels import FuelCatalog
from fuelcalc.storage import InMemoryStorageClient, object_name_from_reference


class FailingUpdateDb(InMemoryDbClient):
    def update_fuel(self, fuel_id, updates):
        if "card_image" in updates:
            raise RuntimeError("database down")
        return super().update_fuel(fuel_id, updates)


class FailingSecondUploadStorage(InMemoryStorageClient):
    def upload_bytes(self, name, data, content_type):
        if self.stored_objects:
            raise ConnectionError("object store unavailable")
        return super().upload_bytes(name, data, content_type)


class FuelCatalogTests(unittest.TestCase):
    def setUp(self):
        self.db = InMemoryDbClient()
        self.storage = InMemoryStorageClient()
        self.catalog = FuelCatalog(self.db, self.storage)

    def _fuel(self, **overrides):
        fields = {"title": "Methane", "heat": 50.0, "molar_mass": 16.04, "is_gas": True}
        fields.update(overrides)
        return self.catalog.create(fields)

    def test_create_requires_title_and_heat(self):
        with self.assertRaises(ValidationError):
            self.catalog.create({"title": "  ", "heat": 1.0})
        with self.assertRaises(ValidationError):
            self.catalog.create({"title": "Coal"})

    def test_partial_update_writes_falsy_values(self):
        fuel = self._fuel()
        updated = self.catalog.update(fuel.id, {"is_gas": False, "molar_mass": 0.0})

        self.assertFalse(updated.is_gas)
        self.assertEqual(updated.molar_mass, 0.0)
        self.assertEqual(updated.title, "Methane")
        self.assertEqual(updated.heat, 50.0)

    def test_update_clears_nullable_field(self):
        fuel = self._fuel(short_desc="gas")
        updated = self.catalog.update(fuel.id, {"short_desc": None})
        self.assertIsNone(updated.short_desc)

    def test_update_rejects_null_required_field(self):
        fuel = self._fuel()
        with self.assertRaises(ValidationError):
            self.catalog.update(fuel.id, {"heat": None})
        with self.assertRaises(ValidationError):
            self.catalog.update(fuel.id, {})

    def test_soft_delete_hides_fuel(self):
        fuel = self._fuel()
        other = self._fuel(title="Propane")
        self.catalog.delete(fuel.id)

        self.assertEqual([f.id for f in self.catalog.list()], [other.id])
        with self.assertRaises(NotFoundError):
            self.catalog.get(fuel.id)
        with self.assertRaises(NotFoundError):
            self.catalog.update(fuel.id, {"heat": 1.0})
        self.assertTrue(self.db.get_fuel(fuel.id, include_deleted=True).is_delete)

    def test_list_filters_by_title(self):
        self._fuel(title="Methane")
        self._fuel(title="Ethane")
        self._fuel(title="Coal")
        self.assertEqual(
            sorted(f.title for f in self.catalog.list("ETH")), ["Ethane", "Methane"]
        )

    def test_upload_replaces_previous_image(self):
        fuel = self._fuel()
        first = self.catalog.upload_image(fuel.id, "a.png", b"one", "image/png")
        second = self.catalog.upload_image(fuel.id, "b.png", b"two", "image/png")

        self.assertEqual(object_name_from_reference(second.card_image), f"fuel_{fuel.id}_b.png")
        self.assertNotIn(object_name_from_reference(first.card_image), self.storage.stored_objects)
        self.assertEqual(self.storage.stored_objects[f"fuel_{fuel.id}_b.png"], b"two")

    def test_failed_upload_keeps_previous_image(self):
        storage = FailingSecondUploadStorage()
        catalog = FuelCatalog(self.db, storage)
        fuel = catalog.create({"title": "Methane", "heat": 50.0})
        first = catalog.upload_image(fuel.id, "a.png", b"one", "image/png")

        with self.assertRaises(ConnectionError):
            catalog.upload_image(fuel.id, "b.png", b"two", "image/png")

        current = catalog.get(fuel.id)
        self.assertEqual(current.card_image, first.card_image)
        self.assertEqual(
            storage.stored_objects[object_name_from_reference(current.card_image)], b"one"
        )

    def test_reupload_with_same_name_keeps_object(self):
        fuel = self._fuel()
        self.catalog.upload_image(fuel.id, "a.png", b"one", "image/png")
        updated = self.catalog.upload_image(fuel.id, "a.png", b"two", "image/png")

        self.assertEqual(
            self.storage.stored_objects[object_name_from_reference(updated.card_image)], b"two"
        )

    def test_delete_removes_image(self):
        fuel = self._fuel()
        self.catalog.upload_image(fuel.id, "a.png", b"one", "image/png")
        self.catalog.delete(fuel.id)
        self.assertEqual(self.storage.stored_objects, {})

    def test_upload_rolls_back_object_on_db_failure(self):
        catalog = FuelCatalog(FailingUpdateDb(), self.storage)
        fuel = catalog.create({"title": "Methane", "heat": 50.0})

        with self.assertRaises(RuntimeError):
            catalog.upload_image(fuel.id, "a.png", b"one", "image/png")
        self.assertEqual(self.storage.stored_objects, {})

    def test_upload_requires_data(self):
        fuel = self._fuel()
        with self.assertRaises(ValidationError):
            self.catalog.upload_image(fuel.id, "a.png", b"", "image/png")


if __name__ == "__main__":
    unittest.main()
