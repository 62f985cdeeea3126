"""Lending service: borrowing, returning and fines.

Each public operation is one unit of work. Validation reads, the loan write
and the inventory adjustment all go through a single session, so they
commit together or not at all. The service holds no locks of its own; the
copy counter is only ever changed by the repository's guarded UPDATE.
"""

import logging
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Callable, Generator, Optional

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..config import Config, get_config
from ..db.models import Loan
from ..db.repositories import ItemRepository, LoanRepository, PatronRepository
from ..db.schemas import LoanCreate, LoanStatus
from ..db.sqlite import Database, get_db
from ..errors import (
    AlreadyReturnedError,
    BorrowLimitError,
    InvalidArgumentError,
    ItemNotFoundError,
    LoanNotFoundError,
    NotEligibleError,
    OutOfStockError,
    PatronNotFoundError,
    TransactionError,
)
from ..messages import get_message
from .fines import FinePolicy
from .schemas import MAX_LOAN_DAYS, BorrowRequest, FineAssessment, InventoryReport

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class LendingService:
    """Orchestrates borrow, return and fine operations."""

    def __init__(
        self,
        db: Optional[Database] = None,
        config: Optional[Config] = None,
        clock: Optional[Clock] = None,
        patrons: Optional[PatronRepository] = None,
        items: Optional[ItemRepository] = None,
        loans: Optional[LoanRepository] = None,
    ):
        """Initialize lending service.

        Args:
            db: Database instance
            config: Lending policy settings (fine rate, limits, locale)
            clock: Returns the current time; injectable for tests
            patrons: Patron repository (defaults to one over db)
            items: Item repository (defaults to one over db)
            loans: Loan repository (defaults to one over db)
        """
        self.db = db or get_db()
        self.config = config or get_config()
        self.clock = clock or utc_now
        self.patrons = patrons or PatronRepository(self.db)
        self.items = items or ItemRepository(self.db)
        self.loans = loans or LoanRepository(self.db)
        self.fine_policy = FinePolicy(self.config.daily_fine_rate)

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _message(self, key: str, **params) -> str:
        return get_message(key, self.config.locale, **params)

    def _now(self) -> datetime:
        now = self.clock()
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        return now

    @contextmanager
    def _unit_of_work(self, operation: str) -> Generator[Session, None, None]:
        """One transaction; database failures surface as TransactionError."""
        try:
            with self.db.get_session() as session:
                yield session
        except SQLAlchemyError as e:
            logger.error("%s rolled back: %s", operation, e)
            raise TransactionError(
                self._message("transaction_failed", operation=operation),
                {"operation": operation},
            ) from e

    def _require_id(self, value: Optional[str], name: str) -> str:
        if value is None or not str(value).strip():
            raise InvalidArgumentError(
                self._message("missing_argument", name=name), {"argument": name}
            )
        return value

    def _validate_borrow(
        self, patron_id: Optional[str], item_id: Optional[str], loan_period_days
    ) -> BorrowRequest:
        self._require_id(patron_id, "patron_id")
        self._require_id(item_id, "item_id")
        if loan_period_days is None:
            loan_period_days = self.config.default_loan_days
        try:
            return BorrowRequest(
                patron_id=patron_id,
                item_id=item_id,
                loan_period_days=loan_period_days,
            )
        except ValidationError as e:
            field = e.errors()[0]["loc"][0]
            if field == "loan_period_days":
                message = self._message("invalid_loan_period", max_days=MAX_LOAN_DAYS)
            else:
                message = self._message("invalid_argument", name=field)
            raise InvalidArgumentError(message, {"argument": field}) from e

    # -------------------------------------------------------------------------
    # Borrow / Return
    # -------------------------------------------------------------------------

    def borrow(
        self,
        patron_id: Optional[str],
        item_id: Optional[str],
        loan_period_days: Optional[int] = None,
    ) -> Loan:
        """Lend one copy of an item to a patron.

        Args:
            patron_id: Patron ID
            item_id: Item ID
            loan_period_days: Days until due (default: configured loan period)

        Returns:
            The created loan, detached, with its ID populated

        Raises:
            InvalidArgumentError: Missing ID or non-positive loan period
            NotEligibleError: Patron missing, not active, or at the loan limit
            OutOfStockError: Item missing or no copy on the shelf
            TransactionError: The unit of work could not be committed
        """
        request = self._validate_borrow(patron_id, item_id, loan_period_days)

        with self._unit_of_work("borrow") as session:
            # locked so concurrent borrows by one patron count open loans in turn
            patron = self.patrons.find_by_id(request.patron_id, session, for_update=True)
            if patron is None:
                raise PatronNotFoundError(
                    self._message("patron_not_found", patron_id=request.patron_id),
                    {"patron_id": request.patron_id},
                )
            if not patron.is_active:
                logger.info("Borrow refused: patron %s is %s", patron.id, patron.status)
                raise NotEligibleError(
                    self._message("patron_not_active", status=patron.status),
                    {"patron_id": patron.id, "status": patron.status},
                )

            if self.config.has_borrow_limit():
                open_loans = self.loans.count_open_for_patron(patron.id, session)
                if open_loans >= self.config.max_active_loans:
                    logger.info("Borrow refused: patron %s at loan limit", patron.id)
                    raise BorrowLimitError(
                        self._message(
                            "borrow_limit_reached",
                            open_loans=open_loans,
                            limit=self.config.max_active_loans,
                        ),
                        {"patron_id": patron.id, "open_loans": open_loans},
                    )

            item = self.items.find_by_id(request.item_id, session)
            if item is None:
                raise ItemNotFoundError(
                    self._message("item_not_found", item_id=request.item_id),
                    {"item_id": request.item_id},
                )
            out_of_stock = OutOfStockError(
                self._message("no_copies_available", item_id=item.id),
                {"item_id": item.id},
            )
            if item.available_copies <= 0:
                logger.info("Borrow refused: item %s has no copies available", item.id)
                raise out_of_stock

            # the guarded decrement is the real check; the read above only
            # spares a write when the shelf is visibly empty
            if not self.items.adjust_available_copies(item.id, -1, session):
                logger.info("Borrow lost the race for the last copy of %s", item.id)
                raise out_of_stock

            now = self._now()
            loan = self.loans.create(
                LoanCreate(
                    patron_id=patron.id,
                    item_id=item.id,
                    borrow_date=now,
                    due_date=now + timedelta(days=request.loan_period_days),
                ),
                session,
            )
            session.refresh(loan)
            session.expunge(loan)

        logger.info("Loan %s: item %s lent to patron %s", loan.id, loan.item_id, loan.patron_id)
        return loan

    def return_loan(self, loan_id: Optional[str]) -> bool:
        """Return a borrowed copy.

        Args:
            loan_id: Loan ID

        Returns:
            True once the loan is returned and the copy is back on the shelf

        Raises:
            InvalidArgumentError: Missing loan ID
            LoanNotFoundError: No such loan
            AlreadyReturnedError: The loan is not open
            TransactionError: The unit of work could not be committed
        """
        self._require_id(loan_id, "loan_id")

        with self._unit_of_work("return") as session:
            loan = self.loans.find_by_id(loan_id, session)
            if loan is None:
                raise LoanNotFoundError(
                    self._message("loan_not_found", loan_id=loan_id), {"loan_id": loan_id}
                )
            item_id = loan.item_id

            already_returned = AlreadyReturnedError(
                self._message("already_returned", loan_id=loan_id),
                {"loan_id": loan_id, "status": loan.status},
            )
            if not loan.is_open:
                raise already_returned
            if not self.loans.mark_returned(loan_id, self._now(), session):
                raise already_returned

            if not self.items.adjust_available_copies(item_id, 1, session):
                # rolls back the status flip with it
                logger.error("Return of loan %s rejected by inventory of %s", loan_id, item_id)
                raise TransactionError(
                    self._message("inventory_rejected", item_id=item_id),
                    {"operation": "return", "loan_id": loan_id, "item_id": item_id},
                )

        logger.info("Loan %s returned; item %s back on the shelf", loan_id, item_id)
        return True

    # -------------------------------------------------------------------------
    # Fines
    # -------------------------------------------------------------------------

    def assess_fine(self, loan_id: Optional[str]) -> FineAssessment:
        """Work out the overdue fine on a loan without changing anything.

        Raises:
            InvalidArgumentError: Missing loan ID
            LoanNotFoundError: No such loan
        """
        self._require_id(loan_id, "loan_id")
        with self._unit_of_work("fine") as session:
            loan = self.loans.find_by_id(loan_id, session)
            if loan is None:
                raise LoanNotFoundError(
                    self._message("loan_not_found", loan_id=loan_id), {"loan_id": loan_id}
                )
            return self.fine_policy.assess(loan, self._now())

    def calculate_fine(self, loan_id: Optional[str]) -> Decimal:
        """Overdue fine on a loan (0.00 when not overdue)."""
        return self.assess_fine(loan_id).amount

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get_loan(self, loan_id: str) -> Loan:
        """Get a loan by ID.

        Raises:
            LoanNotFoundError: No such loan
        """
        self._require_id(loan_id, "loan_id")
        loan = self.loans.find_by_id(loan_id)
        if loan is None:
            raise LoanNotFoundError(
                self._message("loan_not_found", loan_id=loan_id), {"loan_id": loan_id}
            )
        return loan

    def loans_for_patron(self, patron_id: str, open_only: bool = False) -> list[Loan]:
        """Loans taken out by a patron."""
        status = LoanStatus.BORROWED if open_only else None
        return self.loans.find_by_patron_id(patron_id, status=status)

    def loans_for_item(self, item_id: str, open_only: bool = False) -> list[Loan]:
        """Loans of an item."""
        status = LoanStatus.BORROWED if open_only else None
        return self.loans.find_by_item_id(item_id, status=status)

    def check_inventory(self, item_id: str) -> InventoryReport:
        """Compare an item's available count with its open loans.

        Raises:
            NotFoundError: No such item
        """
        self._require_id(item_id, "item_id")
        with self._unit_of_work("inventory check") as session:
            item = self.items.find_by_id(item_id, session)
            if item is None:
                raise ItemNotFoundError(
                    self._message("item_not_found", item_id=item_id), {"item_id": item_id}
                )
            open_loans = self.loans.count_open_for_item(item_id, session)
            expected = item.total_copies - open_loans
            return InventoryReport(
                item_id=item.id,
                title=item.title,
                total_copies=item.total_copies,
                available_copies=item.available_copies,
                open_loans=open_loans,
                expected_available=expected,
                consistent=item.available_copies == expected,
                checked_at=self._now(),
            )
