"""SQLAlchemy ORM models for the lending database.

Tables:
- patrons: Registered borrowers and their eligibility status
- items: Lendable titles with total and available copy counts
- loans: One patron borrowing one item for a bounded period
"""

from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4

from sqlalchemy import CheckConstraint, ForeignKey, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from .schemas import LoanStatus, PatronStatus


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def generate_uuid() -> str:
    """Generate a UUID string for primary keys."""
    return str(uuid4())


def utc_timestamp() -> str:
    """Current UTC time as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


def format_timestamp(value: datetime) -> str:
    """Normalize a datetime to the UTC ISO-8601 form stored in the database.

    Naive datetimes are taken to be UTC.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse a stored timestamp back into an aware datetime."""
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class Patron(Base):
    """Patron model - a registered borrower."""

    __tablename__ = "patrons"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    username: Mapped[str] = mapped_column(String(100), nullable=False, unique=True, index=True)
    full_name: Mapped[str] = mapped_column(String(200), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(200))
    phone: Mapped[Optional[str]] = mapped_column(String(50))
    role: Mapped[str] = mapped_column(String(20), default="member")
    status: Mapped[str] = mapped_column(
        String(20), default=PatronStatus.ACTIVE.value, index=True
    )

    # Timestamps
    created_at: Mapped[str] = mapped_column(String(32), default=utc_timestamp)
    updated_at: Mapped[str] = mapped_column(
        String(32), default=utc_timestamp, onupdate=utc_timestamp
    )

    loans: Mapped[list["Loan"]] = relationship(
        "Loan", back_populates="patron", cascade="all", passive_deletes=True
    )

    def __repr__(self) -> str:
        return f"<Patron(id={self.id}, username='{self.username}', status={self.status})>"

    @property
    def is_active(self) -> bool:
        """Check if the patron may borrow."""
        return self.status == PatronStatus.ACTIVE.value


class Item(Base):
    """Item model - a lendable title with a fixed number of copies."""

    __tablename__ = "items"
    __table_args__ = (
        CheckConstraint("total_copies >= 0", name="ck_items_total_copies_non_negative"),
        CheckConstraint(
            "available_copies >= 0 AND available_copies <= total_copies",
            name="ck_items_available_copies_bounds",
        ),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    isbn: Mapped[Optional[str]] = mapped_column(String(13), index=True)
    title: Mapped[str] = mapped_column(String(500), nullable=False, index=True)
    author: Mapped[Optional[str]] = mapped_column(String(500))
    language: Mapped[Optional[str]] = mapped_column(String(50))

    # Inventory
    total_copies: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    available_copies: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    # Timestamps
    created_at: Mapped[str] = mapped_column(String(32), default=utc_timestamp)
    updated_at: Mapped[str] = mapped_column(
        String(32), default=utc_timestamp, onupdate=utc_timestamp
    )

    loans: Mapped[list["Loan"]] = relationship(
        "Loan", back_populates="item", cascade="all", passive_deletes=True
    )

    def __repr__(self) -> str:
        return (
            f"<Item(id={self.id}, title='{self.title}', "
            f"available={self.available_copies}/{self.total_copies})>"
        )

    @property
    def copies_on_loan(self) -> int:
        """Copies currently tied to open loans, according to the counter."""
        return self.total_copies - self.available_copies


class Loan(Base):
    """Loan model - one patron borrowing one item."""

    __tablename__ = "loans"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)

    patron_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("patrons.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    item_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("items.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    status: Mapped[str] = mapped_column(
        String(20), default=LoanStatus.BORROWED.value, index=True
    )

    # Dates (ISO-8601 UTC timestamps)
    borrow_date: Mapped[str] = mapped_column(String(32), nullable=False)
    due_date: Mapped[str] = mapped_column(String(32), nullable=False)
    return_date: Mapped[Optional[str]] = mapped_column(String(32))

    notes: Mapped[Optional[str]] = mapped_column(Text)

    # Timestamps
    created_at: Mapped[str] = mapped_column(String(32), default=utc_timestamp)
    updated_at: Mapped[str] = mapped_column(
        String(32), default=utc_timestamp, onupdate=utc_timestamp
    )

    # Relationships
    patron: Mapped["Patron"] = relationship("Patron", back_populates="loans")
    item: Mapped["Item"] = relationship("Item", back_populates="loans")

    def __repr__(self) -> str:
        return f"<Loan(id={self.id}, item_id={self.item_id}, status={self.status})>"

    @property
    def is_open(self) -> bool:
        """Check if the loan is still borrowed."""
        return self.status == LoanStatus.BORROWED.value

    @property
    def borrowed_at(self) -> datetime:
        return parse_timestamp(self.borrow_date)

    @property
    def due_at(self) -> datetime:
        return parse_timestamp(self.due_date)

    @property
    def returned_at(self) -> Optional[datetime]:
        return parse_timestamp(self.return_date)

    @property
    def is_overdue(self) -> bool:
        """Check if an open loan is past its due date."""
        if not self.is_open:
            return False
        return self.due_at < datetime.now(timezone.utc)
