import unittest
from datetime import datetime

from fuelcalc.combustions import CombustionService, parse_day
from fuelcalc.db import InMemoryDbClient
from fuelcalc.errors import (
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from fuelcalc.types import RequestStatus


class SubmitBeforeLinkWriteDb(InMemoryDbClient):
    """Submits the draft right before each link write lands."""

    def _submit_draft(self, request_id):
        self.transition_request(
            request_id, (RequestStatus.DRAFT,), RequestStatus.SUBMITTED
        )

    def create_link(self, request_id, fuel_id, fuel_volume=0.0):
        if self.list_request_fuels(request_id):
            self._submit_draft(request_id)
        return super().create_link(request_id, fuel_id, fuel_volume)

    def update_link_volume(self, request_id, fuel_id, fuel_volume):
        self._submit_draft(request_id)
        return super().update_link_volume(request_id, fuel_id, fuel_volume)

    def delete_link(self, request_id, fuel_id):
        self._submit_draft(request_id)
        return super().delete_link(request_id, fuel_id)


class CombustionServiceTests(unittest.TestCase):
    def setUp(self):
        self.db = InMemoryDbClient()
        self.service = CombustionService(self.db, default_molar_volume=22.4)
        self.buyer = self.db.create_user("buyer", "x", "", False)
        self.other = self.db.create_user("other", "x", "", False)
        self.moderator = self.db.create_user("moder", "x", "", True)
        self.fuel = self.db.create_fuel(title="Methane", heat=50.0, is_gas=True)

    def _draft_with_fuel(self):
        self.service.add_fuel(self.buyer.id, self.fuel.id, 3.0)
        return self.db.find_draft(self.buyer.id)

    def test_add_fuel_reuses_single_draft(self):
        second = self.db.create_fuel(title="Propane", heat=46.0)
        self.service.add_fuel(self.buyer.id, self.fuel.id, 1.0)
        self.service.add_fuel(self.buyer.id, second.id, 2.0)

        drafts = self.db.list_requests(creator_id=self.buyer.id, status=RequestStatus.DRAFT)
        self.assertEqual(len(drafts), 1)
        self.assertEqual(drafts[0].molar_volume, 22.4)
        self.assertEqual(self.service.cart_icon(self.buyer.id), (drafts[0].id, 2))

    def test_link_writes_after_concurrent_submit_are_rejected(self):
        db = SubmitBeforeLinkWriteDb()
        service = CombustionService(db)
        buyer = db.create_user("buyer", "x", "", False)
        methane = db.create_fuel(title="Methane", heat=50.0)
        propane = db.create_fuel(title="Propane", heat=46.0)
        service.add_fuel(buyer.id, methane.id, 1.0)
        draft = db.find_draft(buyer.id)

        with self.assertRaises(InvalidStateError):
            service.add_fuel(buyer.id, propane.id, 2.0)

        record = db.get_request(draft.id)
        self.assertEqual(record.status, RequestStatus.SUBMITTED)
        self.assertEqual(db.count_links(draft.id), (0, 1))
        self.assertIsNone(db.get_link(draft.id, propane.id))

    def test_volume_change_and_removal_after_concurrent_submit_are_rejected(self):
        for action in (
            lambda service, buyer, fuel: service.update_fuel_volume(buyer, fuel, 9.0),
            lambda service, buyer, fuel: service.remove_fuel(buyer, fuel),
        ):
            db = SubmitBeforeLinkWriteDb()
            service = CombustionService(db)
            buyer = db.create_user("buyer", "x", "", False)
            methane = db.create_fuel(title="Methane", heat=50.0)
            service.add_fuel(buyer.id, methane.id, 1.0)
            draft = db.find_draft(buyer.id)

            with self.assertRaises(InvalidStateError):
                action(service, buyer.id, methane.id)
            self.assertEqual(db.get_link(draft.id, methane.id).fuel_volume, 1.0)
            self.assertEqual(db.get_request(draft.id).status, RequestStatus.SUBMITTED)

    def test_add_same_fuel_twice(self):
        self._draft_with_fuel()
        with self.assertRaises(ValidationError):
            self.service.add_fuel(self.buyer.id, self.fuel.id, 1.0)

    def test_add_deleted_fuel(self):
        self.db.mark_fuel_deleted(self.fuel.id)
        with self.assertRaises(NotFoundError):
            self.service.add_fuel(self.buyer.id, self.fuel.id)
        self.assertIsNone(self.db.find_draft(self.buyer.id))

    def test_submit_without_fuels(self):
        draft = self.service.get_or_create_draft(self.buyer.id)
        with self.assertRaises(ValidationError):
            self.service.submit(draft.id, self.buyer.id)
        self.assertEqual(self.db.get_request(draft.id).status, RequestStatus.DRAFT)

    def test_submit_then_edit_is_rejected(self):
        draft = self._draft_with_fuel()
        submitted = self.service.submit(draft.id, self.buyer.id)
        self.assertEqual(submitted.status, RequestStatus.SUBMITTED)

        with self.assertRaises(InvalidStateError):
            self.service.submit(draft.id, self.buyer.id)
        with self.assertRaises(InvalidStateError):
            self.service.set_molar_volume(draft.id, 24.0, self.buyer.id)
        with self.assertRaises(NotFoundError):
            self.service.update_fuel_volume(self.buyer.id, self.fuel.id, 1.0)

    def test_set_molar_volume_on_draft(self):
        draft = self._draft_with_fuel()
        updated = self.service.set_molar_volume(draft.id, 24.1, self.buyer.id)
        self.assertEqual(updated.molar_volume, 24.1)
        self.assertEqual(updated.status, RequestStatus.DRAFT)

    def test_foreign_request_is_forbidden(self):
        draft = self._draft_with_fuel()
        with self.assertRaises(ForbiddenError):
            self.service.submit(draft.id, self.other.id)
        with self.assertRaises(ForbiddenError):
            self.service.get(draft.id, self.other.id)
        detail = self.service.get(draft.id, self.moderator.id, is_moderator=True)
        self.assertEqual(len(detail.fuels), 1)

    def test_moderate(self):
        draft = self._draft_with_fuel()
        with self.assertRaises(InvalidStateError):
            self.service.moderate(draft.id, self.moderator.id, approve=True)

        self.service.submit(draft.id, self.buyer.id)
        record = self.service.moderate(draft.id, self.moderator.id, approve=True)
        self.assertEqual(record.status, RequestStatus.COMPLETED)
        self.assertEqual(record.moderator_id, self.moderator.id)
        self.assertIsNone(record.final_result)
        self.assertIsNotNone(record.date_finish)

        with self.assertRaises(InvalidStateError):
            self.service.moderate(draft.id, self.moderator.id, approve=False)

    def test_delete_hides_request(self):
        draft = self._draft_with_fuel()
        self.service.delete_current_draft(self.buyer.id)

        with self.assertRaises(NotFoundError):
            self.service.get(draft.id, self.buyer.id)
        self.assertEqual(self.service.list(self.buyer.id), [])
        self.assertEqual(self.service.cart_icon(self.buyer.id), (0, 0))
        deleted = self.service.list(self.buyer.id, status="deleted")
        self.assertEqual([r.id for r in deleted], [draft.id])

    def test_completed_request_cannot_be_deleted(self):
        draft = self._draft_with_fuel()
        self.service.submit(draft.id, self.buyer.id)
        self.service.moderate(draft.id, self.moderator.id, approve=True)
        with self.assertRaises(InvalidStateError):
            self.service.delete(draft.id, self.buyer.id)

    def test_list_scopes_and_filters(self):
        draft = self._draft_with_fuel()
        self.service.add_fuel(self.other.id, self.fuel.id, 1.0)

        self.assertEqual([r.id for r in self.service.list(self.buyer.id)], [draft.id])
        self.assertEqual(len(self.service.list(self.moderator.id, is_moderator=True)), 2)

        today = datetime.now().strftime("%d.%m.%Y")
        self.assertEqual(
            len(self.service.list(self.buyer.id, start_date=today, end_date=today)), 1
        )
        self.assertEqual(self.service.list(self.buyer.id, start_date="01.01.2999"), [])
        with self.assertRaises(ValidationError):
            self.service.list(self.buyer.id, start_date="2024-01-01")
        with self.assertRaises(ValidationError):
            self.service.list(self.buyer.id, status="archived")

    def test_parse_day_end_of_day(self):
        start = parse_day("02.03.2024")
        end = parse_day("02.03.2024", end_of_day=True)
        self.assertLess(end - start, 86400)
        self.assertGreater(end - start, 86399)
        self.assertIsNone(parse_day(""))

    def test_negative_volume_rejected(self):
        with self.assertRaises(ValidationError):
            self.service.add_fuel(self.buyer.id, self.fuel.id, -1.0)
        with self.assertRaises(ValidationError):
            self.service.set_molar_volume(1, 0)


if __name__ == "__main__":
    unittest.main()
