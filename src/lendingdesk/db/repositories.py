"""Repositories for patrons, items and loans.

Repositories perform the mechanical reads and writes and apply no lending
policy. Every method takes an optional session: pass one to take part in a
caller's transaction, omit it to run in a transaction of its own and get
detached objects back.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from .models import Item, Loan, Patron, format_timestamp, utc_timestamp
from .schemas import (
    ItemCreate,
    ItemUpdate,
    LoanCreate,
    LoanStatus,
    LoanUpdate,
    PatronCreate,
    PatronUpdate,
)
from .sqlite import Database, get_db


class PatronRepository:
    """CRUD operations for patrons."""

    def __init__(self, db: Optional[Database] = None):
        self.db = db or get_db()

    def create(self, data: PatronCreate, session: Optional[Session] = None) -> Patron:
        """Create a new patron record."""

        def _create(s: Session) -> Patron:
            patron = Patron(
                username=data.username,
                full_name=data.full_name,
                email=data.email,
                phone=data.phone,
                role=data.role,
                status=data.status.value,
            )
            s.add(patron)
            s.flush()
            return patron

        if session:
            return _create(session)
        else:
            with self.db.get_session() as s:
                patron = _create(s)
                s.expunge(patron)
                return patron

    def find_by_id(
        self,
        patron_id: str,
        session: Optional[Session] = None,
        for_update: bool = False,
    ) -> Optional[Patron]:
        """Get a patron by ID.

        With ``for_update`` the row is read with SELECT ... FOR UPDATE, so
        other transactions that lock the same patron wait for this one.
        SQLite has no row locks and ignores the clause; its
        ``BEGIN IMMEDIATE`` already serializes writers.
        """

        def _get(s: Session) -> Optional[Patron]:
            if for_update:
                return s.get(Patron, patron_id, with_for_update=True, populate_existing=True)
            return s.get(Patron, patron_id)

        if session:
            return _get(session)
        else:
            with self.db.get_session() as s:
                patron = _get(s)
                if patron:
                    s.expunge(patron)
                return patron

    def find_by_username(
        self, username: str, session: Optional[Session] = None
    ) -> Optional[Patron]:
        """Get a patron by username."""

        def _get(s: Session) -> Optional[Patron]:
            stmt = select(Patron).where(Patron.username == username)
            return s.execute(stmt).scalar_one_or_none()

        if session:
            return _get(session)
        else:
            with self.db.get_session() as s:
                patron = _get(s)
                if patron:
                    s.expunge(patron)
                return patron

    def list_all(self, session: Optional[Session] = None) -> list[Patron]:
        """Get all patrons, ordered by username."""

        def _get(s: Session) -> list[Patron]:
            stmt = select(Patron).order_by(Patron.username)
            return list(s.execute(stmt).scalars().all())

        if session:
            return _get(session)
        else:
            with self.db.get_session() as s:
                patrons = _get(s)
                for patron in patrons:
                    s.expunge(patron)
                return patrons

    def update(
        self, patron_id: str, data: PatronUpdate, session: Optional[Session] = None
    ) -> Optional[Patron]:
        """Update a patron record."""

        def _update(s: Session) -> Optional[Patron]:
            patron = s.get(Patron, patron_id)
            if not patron:
                return None

            update_data = data.model_dump(exclude_unset=True)
            for field, value in update_data.items():
                if field == "status" and value:
                    patron.status = value.value
                else:
                    setattr(patron, field, value)

            s.flush()
            return patron

        if session:
            return _update(session)
        else:
            with self.db.get_session() as s:
                patron = _update(s)
                if patron:
                    s.expunge(patron)
                return patron

    def delete(self, patron_id: str, session: Optional[Session] = None) -> bool:
        """Delete a patron record.

        Raises:
            ValueError: If the patron still has open loans
        """

        def _delete(s: Session) -> bool:
            patron = s.get(Patron, patron_id)
            if not patron:
                return False

            open_loans = s.execute(
                select(func.count(Loan.id)).where(
                    Loan.patron_id == patron_id,
                    Loan.status == LoanStatus.BORROWED.value,
                )
            ).scalar_one()
            if open_loans:
                raise ValueError("Cannot delete patron with open loans")

            s.delete(patron)
            return True

        if session:
            return _delete(session)
        else:
            with self.db.get_session() as s:
                return _delete(s)


class ItemRepository:
    """CRUD operations for items plus the atomic copy-count adjustment."""

    def __init__(self, db: Optional[Database] = None):
        self.db = db or get_db()

    def create(self, data: ItemCreate, session: Optional[Session] = None) -> Item:
        """Create a new item record."""

        def _create(s: Session) -> Item:
            item = Item(
                title=data.title,
                author=data.author,
                isbn=data.isbn,
                language=data.language,
                total_copies=data.total_copies,
                available_copies=data.available_copies,
            )
            s.add(item)
            s.flush()
            return item

        if session:
            return _create(session)
        else:
            with self.db.get_session() as s:
                item = _create(s)
                s.expunge(item)
                return item

    def find_by_id(self, item_id: str, session: Optional[Session] = None) -> Optional[Item]:
        """Get an item by ID."""

        def _get(s: Session) -> Optional[Item]:
            return s.get(Item, item_id)

        if session:
            return _get(session)
        else:
            with self.db.get_session() as s:
                item = _get(s)
                if item:
                    s.expunge(item)
                return item

    def list_all(self, session: Optional[Session] = None) -> list[Item]:
        """Get all items, ordered by title."""

        def _get(s: Session) -> list[Item]:
            stmt = select(Item).order_by(Item.title)
            return list(s.execute(stmt).scalars().all())

        if session:
            return _get(session)
        else:
            with self.db.get_session() as s:
                items = _get(s)
                for item in items:
                    s.expunge(item)
                return items

    def update(
        self, item_id: str, data: ItemUpdate, session: Optional[Session] = None
    ) -> Optional[Item]:
        """Update an item record.

        A change of ``total_copies`` shifts ``available_copies`` by the same
        amount, so withdrawing copies that are out on loan is rejected.

        Raises:
            ValueError: If fewer copies would remain than are on loan
        """

        def _update(s: Session) -> Optional[Item]:
            item = s.get(Item, item_id)
            if not item:
                return None

            update_data = data.model_dump(exclude_unset=True)
            new_total = update_data.pop("total_copies", None)
            for field, value in update_data.items():
                setattr(item, field, value)
            s.flush()

            if new_total is not None and new_total != item.total_copies:
                delta = new_total - item.total_copies
                table = Item.__table__
                result = s.execute(
                    update(table)
                    .where(
                        table.c.id == item_id,
                        table.c.total_copies == item.total_copies,
                        table.c.available_copies + delta >= 0,
                    )
                    .values(
                        total_copies=new_total,
                        available_copies=table.c.available_copies + delta,
                    )
                )
                if result.rowcount != 1:
                    raise ValueError("Cannot withdraw copies that are currently on loan")
                s.refresh(item)

            return item

        if session:
            return _update(session)
        else:
            with self.db.get_session() as s:
                item = _update(s)
                if item:
                    s.expunge(item)
                return item

    def delete(self, item_id: str, session: Optional[Session] = None) -> bool:
        """Delete an item record.

        Raises:
            ValueError: If copies of the item are still on loan
        """

        def _delete(s: Session) -> bool:
            item = s.get(Item, item_id)
            if not item:
                return False

            open_loans = s.execute(
                select(func.count(Loan.id)).where(
                    Loan.item_id == item_id,
                    Loan.status == LoanStatus.BORROWED.value,
                )
            ).scalar_one()
            if open_loans:
                raise ValueError("Cannot delete item with copies on loan")

            s.delete(item)
            return True

        if session:
            return _delete(session)
        else:
            with self.db.get_session() as s:
                return _delete(s)

    def adjust_available_copies(
        self, item_id: str, delta: int, session: Optional[Session] = None
    ) -> bool:
        """Atomically add delta to an item's available copies.

        The change is a single guarded UPDATE evaluated by the database, so
        the count stays within [0, total_copies] no matter how many callers
        race on it. Nothing is read into Python first.

        Args:
            item_id: Item ID
            delta: Copies to add (negative to take copies off the shelf)

        Returns:
            True if the row was changed, False if the item does not exist
            or the result would fall outside [0, total_copies]
        """

        def _adjust(s: Session) -> bool:
            table = Item.__table__
            result = s.execute(
                update(table)
                .where(
                    table.c.id == item_id,
                    table.c.available_copies + delta >= 0,
                    table.c.available_copies + delta <= table.c.total_copies,
                )
                .values(available_copies=table.c.available_copies + delta)
            )
            changed = result.rowcount == 1
            if changed:
                # keep any copy already loaded in this session in step
                cached = s.identity_map.get(s.identity_key(Item, item_id))
                if cached is not None:
                    s.expire(cached, ["available_copies", "updated_at"])
            return changed

        if session:
            return _adjust(session)
        else:
            with self.db.get_session() as s:
                return _adjust(s)

    def set_available_copies(
        self, item_id: str, value: int, session: Optional[Session] = None
    ) -> bool:
        """Overwrite the available count after a stock-take.

        Administrative correction only; lending never calls this.

        Returns:
            True if the row was changed, False if the item does not exist
            or value is outside [0, total_copies]
        """

        def _set(s: Session) -> bool:
            table = Item.__table__
            result = s.execute(
                update(table)
                .where(
                    table.c.id == item_id,
                    table.c.total_copies >= value,
                )
                .values(available_copies=value)
            )
            changed = result.rowcount == 1
            if changed:
                cached = s.identity_map.get(s.identity_key(Item, item_id))
                if cached is not None:
                    s.expire(cached, ["available_copies", "updated_at"])
            return changed

        if value < 0:
            return False
        if session:
            return _set(session)
        else:
            with self.db.get_session() as s:
                return _set(s)


class LoanRepository:
    """CRUD operations and lookups for loans."""

    def __init__(self, db: Optional[Database] = None):
        self.db = db or get_db()

    def create(self, data: LoanCreate, session: Optional[Session] = None) -> Loan:
        """Create a new loan record in the borrowed state."""

        def _create(s: Session) -> Loan:
            loan = Loan(
                patron_id=data.patron_id,
                item_id=data.item_id,
                status=LoanStatus.BORROWED.value,
                borrow_date=format_timestamp(data.borrow_date),
                due_date=format_timestamp(data.due_date),
                return_date=None,
                notes=data.notes,
            )
            s.add(loan)
            s.flush()
            return loan

        if session:
            return _create(session)
        else:
            with self.db.get_session() as s:
                loan = _create(s)
                s.expunge(loan)
                return loan

    def find_by_id(self, loan_id: str, session: Optional[Session] = None) -> Optional[Loan]:
        """Get a loan by ID."""

        def _get(s: Session) -> Optional[Loan]:
            return s.get(Loan, loan_id)

        if session:
            return _get(session)
        else:
            with self.db.get_session() as s:
                loan = _get(s)
                if loan:
                    s.expunge(loan)
                return loan

    def find_by_patron_id(
        self,
        patron_id: str,
        status: Optional[LoanStatus] = None,
        session: Optional[Session] = None,
    ) -> list[Loan]:
        """Get loans for a patron, most recent first."""
        return self._find(Loan.patron_id == patron_id, status, session)

    def find_by_item_id(
        self,
        item_id: str,
        status: Optional[LoanStatus] = None,
        session: Optional[Session] = None,
    ) -> list[Loan]:
        """Get loans for an item, most recent first."""
        return self._find(Loan.item_id == item_id, status, session)

    def _find(self, criterion, status: Optional[LoanStatus], session: Optional[Session]):
        def _get(s: Session) -> list[Loan]:
            stmt = select(Loan).where(criterion)
            if status:
                stmt = stmt.where(Loan.status == status.value)
            stmt = stmt.order_by(Loan.borrow_date.desc())
            return list(s.execute(stmt).scalars().all())

        if session:
            return _get(session)
        else:
            with self.db.get_session() as s:
                loans = _get(s)
                for loan in loans:
                    s.expunge(loan)
                return loans

    def count_open_for_patron(self, patron_id: str, session: Optional[Session] = None) -> int:
        """Count loans the patron has not returned yet."""
        return self._count_open(Loan.patron_id == patron_id, session)

    def count_open_for_item(self, item_id: str, session: Optional[Session] = None) -> int:
        """Count copies of the item that are out on open loans."""
        return self._count_open(Loan.item_id == item_id, session)

    def _count_open(self, criterion, session: Optional[Session]) -> int:
        def _count(s: Session) -> int:
            stmt = select(func.count(Loan.id)).where(
                criterion, Loan.status == LoanStatus.BORROWED.value
            )
            return s.execute(stmt).scalar_one()

        if session:
            return _count(session)
        else:
            with self.db.get_session() as s:
                return _count(s)

    def update(
        self, loan_id: str, data: LoanUpdate, session: Optional[Session] = None
    ) -> Optional[Loan]:
        """Update a loan's due date or notes."""

        def _update(s: Session) -> Optional[Loan]:
            loan = s.get(Loan, loan_id)
            if not loan:
                return None

            update_data = data.model_dump(exclude_unset=True)
            for field, value in update_data.items():
                if field == "due_date" and value:
                    loan.due_date = format_timestamp(value)
                elif hasattr(loan, field):
                    setattr(loan, field, value)

            s.flush()
            return loan

        if session:
            return _update(session)
        else:
            with self.db.get_session() as s:
                loan = _update(s)
                if loan:
                    s.expunge(loan)
                return loan

    def mark_returned(
        self, loan_id: str, when: datetime, session: Optional[Session] = None
    ) -> bool:
        """Flip an open loan to returned.

        Guarded on the current status, so of two racing calls only one
        matches the row.

        Returns:
            True if the loan was open and is now returned
        """

        def _mark(s: Session) -> bool:
            table = Loan.__table__
            result = s.execute(
                update(table)
                .where(
                    table.c.id == loan_id,
                    table.c.status == LoanStatus.BORROWED.value,
                )
                .values(
                    status=LoanStatus.RETURNED.value,
                    return_date=format_timestamp(when),
                    updated_at=utc_timestamp(),
                )
            )
            changed = result.rowcount == 1
            if changed:
                cached = s.identity_map.get(s.identity_key(Loan, loan_id))
                if cached is not None:
                    s.expire(cached)
            return changed

        if session:
            return _mark(session)
        else:
            with self.db.get_session() as s:
                return _mark(s)

    def delete(self, loan_id: str, session: Optional[Session] = None) -> bool:
        """Delete a returned loan record.

        Raises:
            ValueError: If the loan is still open
        """

        def _delete(s: Session) -> bool:
            loan = s.get(Loan, loan_id)
            if not loan:
                return False
            if loan.is_open:
                raise ValueError("Cannot delete a loan that has not been returned")
            s.delete(loan)
            return True

        if session:
            return _delete(session)
        else:
            with self.db.get_session() as s:
                return _delete(s)
