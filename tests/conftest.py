"""Pytest configuration and shared fixtures.

This module provides fixtures for testing lendingdesk, including
file-backed and in-memory databases, sample patrons and items, and a
controllable clock.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path
from typing import Generator

import pytest

from lendingdesk.config import Config, reset_config
from lendingdesk.db.models import Item, Patron
from lendingdesk.db.repositories import ItemRepository, LoanRepository, PatronRepository
from lendingdesk.db.schemas import ItemCreate, PatronCreate, PatronStatus
from lendingdesk.db.sqlite import Database, reset_db
from lendingdesk.lending.service import LendingService


class FakeClock:
    """Clock that only moves when told to."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


# ============================================================================
# Database Fixtures
# ============================================================================


@pytest.fixture(scope="function")
def temp_db_path(tmp_path: Path) -> Path:
    """Path for a temporary database file."""
    return tmp_path / "lending.db"


@pytest.fixture(scope="function")
def db(temp_db_path: Path) -> Generator[Database, None, None]:
    """Create a file-backed test database."""
    reset_db()
    reset_config()

    database = Database(str(temp_db_path), busy_timeout=30.0)
    database.create_tables()
    yield database

    database.dispose()
    reset_db()


@pytest.fixture(scope="function")
def memory_db() -> Generator[Database, None, None]:
    """Create an in-memory test database."""
    database = Database(":memory:")
    database.create_tables()
    yield database
    database.dispose()


# ============================================================================
# Policy Fixtures
# ============================================================================


@pytest.fixture
def config(temp_db_path: Path) -> Config:
    """Lending settings used by the tests, independent of the environment."""
    return Config(
        db_path=temp_db_path,
        database_url=None,
        busy_timeout=30.0,
        daily_fine_rate=Decimal("0.50"),
        default_loan_days=14,
        max_active_loans=5,
        locale="en",
        log_level="WARNING",
    )


@pytest.fixture
def clock() -> FakeClock:
    """Clock pinned to a fixed instant."""
    return FakeClock(datetime(2025, 3, 1, 9, 30, tzinfo=timezone.utc))


@pytest.fixture
def service(db: Database, config: Config, clock: FakeClock) -> LendingService:
    """Lending service over the file-backed database."""
    return LendingService(db, config, clock=clock)


# ============================================================================
# Repository Fixtures
# ============================================================================


@pytest.fixture
def patrons(db: Database) -> PatronRepository:
    return PatronRepository(db)


@pytest.fixture
def items(db: Database) -> ItemRepository:
    return ItemRepository(db)


@pytest.fixture
def loans(db: Database) -> LoanRepository:
    return LoanRepository(db)


# ============================================================================
# Sample Data Fixtures
# ============================================================================


@pytest.fixture
def sample_patron(patrons: PatronRepository) -> Patron:
    """An active patron."""
    return patrons.create(
        PatronCreate(
            username="ani.wijaya",
            full_name="Ani Wijaya",
            email="ani@example.com",
            phone="+62 812 3456 7890",
        )
    )


@pytest.fixture
def inactive_patron(patrons: PatronRepository) -> Patron:
    """A patron who may not borrow."""
    return patrons.create(
        PatronCreate(
            username="budi.santoso",
            full_name="Budi Santoso",
            status=PatronStatus.INACTIVE,
        )
    )


@pytest.fixture
def sample_item(items: ItemRepository) -> Item:
    """An item with five copies on the shelf."""
    return items.create(
        ItemCreate(
            title="Laskar Pelangi",
            author="Andrea Hirata",
            isbn="9789793062792",
            language="Indonesia",
            total_copies=5,
        )
    )


@pytest.fixture
def single_copy_item(items: ItemRepository) -> Item:
    """An item with exactly one copy."""
    return items.create(
        ItemCreate(title="Bumi Manusia", author="Pramoedya Ananta Toer", total_copies=1)
    )


@pytest.fixture
def multiple_items(items: ItemRepository) -> list[Item]:
    """Several items with two copies each."""
    titles = ["Ronggeng Dukuh Paruk", "Cantik Itu Luka", "Ayat-Ayat Cinta", "Supernova"]
    return [items.create(ItemCreate(title=title, total_copies=2)) for title in titles]
