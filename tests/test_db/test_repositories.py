"""Tests for patron, item and loan repositories."""

from datetime import datetime, timedelta, timezone
from uuid import UUID

import pytest

from lendingdesk.db.models import Item, Patron
from lendingdesk.db.repositories import ItemRepository, LoanRepository, PatronRepository
from lendingdesk.db.schemas import (
    ItemCreate,
    ItemUpdate,
    LoanCreate,
    LoanStatus,
    LoanUpdate,
    PatronStatus,
    PatronUpdate,
)
from lendingdesk.db.sqlite import Database

NOW = datetime(2025, 3, 1, 9, 30, tzinfo=timezone.utc)


@pytest.fixture
def open_loan(loans: LoanRepository, sample_patron: Patron, sample_item: Item):
    """A loan record in the borrowed state (inventory untouched)."""
    return loans.create(
        LoanCreate(
            patron_id=sample_patron.id,
            item_id=sample_item.id,
            borrow_date=NOW,
            due_date=NOW + timedelta(days=14),
        )
    )


class TestPatronRepository:
    """Tests for patron CRUD."""

    def test_create_patron(self, sample_patron: Patron):
        assert sample_patron.username == "ani.wijaya"
        assert sample_patron.status == PatronStatus.ACTIVE.value
        assert sample_patron.is_active
        assert str(UUID(sample_patron.id)) == sample_patron.id

    def test_find_by_id(self, patrons: PatronRepository, sample_patron: Patron):
        patron = patrons.find_by_id(sample_patron.id)

        assert patron is not None
        assert patron.full_name == "Ani Wijaya"

    def test_find_nonexistent(self, patrons: PatronRepository):
        assert patrons.find_by_id("nonexistent-id") is None

    def test_find_by_username(self, patrons: PatronRepository, sample_patron: Patron):
        assert patrons.find_by_username("ani.wijaya").id == sample_patron.id
        assert patrons.find_by_username("nobody") is None

    def test_list_all_sorted(self, patrons, sample_patron, inactive_patron):
        usernames = [p.username for p in patrons.list_all()]
        assert usernames == ["ani.wijaya", "budi.santoso"]

    def test_update_status(self, patrons: PatronRepository, sample_patron: Patron):
        """Test that status changes are stored as plain values."""
        updated = patrons.update(sample_patron.id, PatronUpdate(status=PatronStatus.SUSPENDED))

        assert updated.status == "suspended"
        assert not updated.is_active
        assert patrons.find_by_id(sample_patron.id).status == "suspended"

    def test_update_partial(self, patrons: PatronRepository, sample_patron: Patron):
        updated = patrons.update(sample_patron.id, PatronUpdate(phone="021-555-0101"))

        assert updated.phone == "021-555-0101"
        assert updated.email == "ani@example.com"

    def test_update_nonexistent(self, patrons: PatronRepository):
        assert patrons.update("missing", PatronUpdate(full_name="X")) is None

    def test_delete(self, patrons: PatronRepository, sample_patron: Patron):
        assert patrons.delete(sample_patron.id) is True
        assert patrons.find_by_id(sample_patron.id) is None

    def test_delete_with_open_loans(self, patrons, sample_patron, open_loan):
        with pytest.raises(ValueError):
            patrons.delete(sample_patron.id)

    def test_delete_removes_returned_loans(self, patrons, loans, sample_patron, open_loan):
        loans.mark_returned(open_loan.id, NOW + timedelta(days=2))

        assert patrons.delete(sample_patron.id) is True
        assert loans.find_by_id(open_loan.id) is None


class TestItemRepository:
    """Tests for item CRUD."""

    def test_create_item(self, sample_item: Item):
        assert sample_item.title == "Laskar Pelangi"
        assert sample_item.total_copies == 5
        assert sample_item.available_copies == 5
        assert sample_item.copies_on_loan == 0

    def test_list_all_sorted(self, items: ItemRepository, multiple_items):
        titles = [item.title for item in items.list_all()]
        assert titles == sorted(titles)

    def test_update_metadata(self, items: ItemRepository, sample_item: Item):
        updated = items.update(sample_item.id, ItemUpdate(author="A. Hirata"))

        assert updated.author == "A. Hirata"
        assert updated.available_copies == 5

    def test_add_copies(self, items: ItemRepository, sample_item: Item):
        """Test that new copies go straight onto the shelf."""
        items.adjust_available_copies(sample_item.id, -2)

        updated = items.update(sample_item.id, ItemUpdate(total_copies=8))

        assert updated.total_copies == 8
        assert updated.available_copies == 6

    def test_withdraw_shelf_copies(self, items: ItemRepository, sample_item: Item):
        updated = items.update(sample_item.id, ItemUpdate(total_copies=3))

        assert updated.total_copies == 3
        assert updated.available_copies == 3

    def test_cannot_withdraw_copies_on_loan(self, items: ItemRepository, sample_item: Item):
        """Test that only copies on the shelf can be withdrawn."""
        items.adjust_available_copies(sample_item.id, -4)

        with pytest.raises(ValueError):
            items.update(sample_item.id, ItemUpdate(total_copies=2))

        item = items.find_by_id(sample_item.id)
        assert item.total_copies == 5
        assert item.available_copies == 1

    def test_delete(self, items: ItemRepository, sample_item: Item):
        assert items.delete(sample_item.id) is True
        assert items.find_by_id(sample_item.id) is None

    def test_delete_with_copies_on_loan(self, items, sample_item, open_loan):
        with pytest.raises(ValueError):
            items.delete(sample_item.id)


class TestAdjustAvailableCopies:
    """Tests for the guarded counter update."""

    def test_decrement(self, items: ItemRepository, sample_item: Item):
        assert items.adjust_available_copies(sample_item.id, -1) is True
        assert items.find_by_id(sample_item.id).available_copies == 4

    def test_cannot_go_below_zero(self, items: ItemRepository, single_copy_item: Item):
        assert items.adjust_available_copies(single_copy_item.id, -1) is True
        assert items.adjust_available_copies(single_copy_item.id, -1) is False
        assert items.find_by_id(single_copy_item.id).available_copies == 0

    def test_cannot_exceed_total(self, items: ItemRepository, sample_item: Item):
        assert items.adjust_available_copies(sample_item.id, 1) is False
        assert items.find_by_id(sample_item.id).available_copies == 5

    def test_unknown_item(self, items: ItemRepository):
        assert items.adjust_available_copies("missing", -1) is False

    def test_refreshes_loaded_item_in_session(self, db: Database, items, sample_item):
        """Test a copy already loaded in the session sees the new count."""
        with db.get_session() as session:
            item = items.find_by_id(sample_item.id, session)
            assert item.available_copies == 5
            assert items.adjust_available_copies(sample_item.id, -3, session)
            assert item.available_copies == 2

    def test_rolled_back_with_session(self, db: Database, items, sample_item):
        with pytest.raises(RuntimeError):
            with db.get_session() as session:
                items.adjust_available_copies(sample_item.id, -1, session)
                raise RuntimeError("abort")

        assert items.find_by_id(sample_item.id).available_copies == 5


class TestSetAvailableCopies:
    """Tests for the stock-take correction."""

    def test_set_within_bounds(self, items: ItemRepository, sample_item: Item):
        assert items.set_available_copies(sample_item.id, 2) is True
        assert items.find_by_id(sample_item.id).available_copies == 2

    def test_set_out_of_bounds(self, items: ItemRepository, sample_item: Item):
        assert items.set_available_copies(sample_item.id, 6) is False
        assert items.set_available_copies(sample_item.id, -1) is False
        assert items.find_by_id(sample_item.id).available_copies == 5


class TestLoanRepository:
    """Tests for loan records."""

    def test_create_loan(self, open_loan, sample_patron, sample_item):
        assert open_loan.status == LoanStatus.BORROWED.value
        assert open_loan.patron_id == sample_patron.id
        assert open_loan.item_id == sample_item.id
        assert open_loan.borrowed_at == NOW
        assert open_loan.due_at == NOW + timedelta(days=14)
        assert open_loan.returned_at is None
        assert open_loan.is_open

    def test_create_does_not_touch_inventory(self, items, sample_item, open_loan):
        assert items.find_by_id(sample_item.id).available_copies == 5

    def test_find_by_patron_id(self, loans, sample_patron, open_loan):
        found = loans.find_by_patron_id(sample_patron.id)

        assert [loan.id for loan in found] == [open_loan.id]

    def test_find_by_status(self, loans, sample_patron, sample_item, open_loan):
        later = loans.create(
            LoanCreate(
                patron_id=sample_patron.id,
                item_id=sample_item.id,
                borrow_date=NOW + timedelta(days=1),
                due_date=NOW + timedelta(days=15),
            )
        )
        loans.mark_returned(open_loan.id, NOW + timedelta(days=3))

        borrowed = loans.find_by_item_id(sample_item.id, status=LoanStatus.BORROWED)
        returned = loans.find_by_item_id(sample_item.id, status=LoanStatus.RETURNED)
        everything = loans.find_by_item_id(sample_item.id)

        assert [loan.id for loan in borrowed] == [later.id]
        assert [loan.id for loan in returned] == [open_loan.id]
        # most recent first
        assert [loan.id for loan in everything] == [later.id, open_loan.id]

    def test_count_open(self, loans, sample_patron, sample_item, open_loan):
        assert loans.count_open_for_patron(sample_patron.id) == 1
        assert loans.count_open_for_item(sample_item.id) == 1

        loans.mark_returned(open_loan.id, NOW)

        assert loans.count_open_for_patron(sample_patron.id) == 0
        assert loans.count_open_for_item(sample_item.id) == 0

    def test_mark_returned_once(self, loans, open_loan):
        """Test that only the first return flips the loan."""
        returned_at = NOW + timedelta(days=4)

        assert loans.mark_returned(open_loan.id, returned_at) is True
        assert loans.mark_returned(open_loan.id, returned_at) is False

        loan = loans.find_by_id(open_loan.id)
        assert loan.status == LoanStatus.RETURNED.value
        assert loan.returned_at == returned_at
        assert not loan.is_overdue

    def test_mark_returned_unknown(self, loans):
        assert loans.mark_returned("missing", NOW) is False

    def test_update_due_date(self, loans, open_loan):
        new_due = NOW + timedelta(days=30)

        updated = loans.update(open_loan.id, LoanUpdate(due_date=new_due, notes="renewed"))

        assert updated.due_at == new_due
        assert updated.notes == "renewed"

    def test_naive_datetimes_stored_as_utc(self, loans, sample_patron, sample_item):
        naive = datetime(2025, 3, 1, 9, 30)
        loan = loans.create(
            LoanCreate(
                patron_id=sample_patron.id,
                item_id=sample_item.id,
                borrow_date=naive,
                due_date=naive + timedelta(days=7),
            )
        )

        assert loan.borrowed_at == naive.replace(tzinfo=timezone.utc)

    def test_delete_returned(self, loans, open_loan):
        loans.mark_returned(open_loan.id, NOW + timedelta(days=1))

        assert loans.delete(open_loan.id) is True
        assert loans.find_by_id(open_loan.id) is None

    def test_delete_open_loan_refused(self, loans, items, sample_item, open_loan):
        """Test an open loan cannot be deleted out from under the copy count."""
        with pytest.raises(ValueError):
            loans.delete(open_loan.id)

        assert loans.find_by_id(open_loan.id).is_open
        assert loans.count_open_for_item(sample_item.id) == 1

    def test_delete_unknown(self, loans):
        assert loans.delete("missing") is False


class TestPatronLocking:
    """Tests for reading a patron with a row lock."""

    def test_find_for_update(self, db: Database, patrons, sample_patron):
        with db.get_session() as session:
            patron = patrons.find_by_id(sample_patron.id, session, for_update=True)
            assert patron.username == "ani.wijaya"

