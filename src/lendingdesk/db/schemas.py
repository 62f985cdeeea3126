"""Pydantic schemas for data validation.

These schemas define the structure of patrons, items and loans as they
enter and leave the repositories.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator


class PatronStatus(str, Enum):
    """Eligibility status of a patron. Only active patrons may borrow."""

    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"


class LoanStatus(str, Enum):
    """Status of a loan."""

    BORROWED = "borrowed"
    RETURNED = "returned"


# ============================================================================
# Patron Schemas
# ============================================================================


class PatronBase(BaseModel):
    """Base patron fields."""

    username: str = Field(..., min_length=1, max_length=100)
    full_name: str = Field(..., min_length=1, max_length=200)
    email: Optional[str] = Field(None, max_length=200)
    phone: Optional[str] = Field(None, max_length=50)
    role: str = Field("member", max_length=20)
    status: PatronStatus = PatronStatus.ACTIVE


class PatronCreate(PatronBase):
    """Schema for creating a patron."""

    pass


class PatronUpdate(BaseModel):
    """Schema for updating a patron. All fields optional."""

    full_name: Optional[str] = Field(None, min_length=1, max_length=200)
    email: Optional[str] = Field(None, max_length=200)
    phone: Optional[str] = Field(None, max_length=50)
    role: Optional[str] = Field(None, max_length=20)
    status: Optional[PatronStatus] = None


class PatronResponse(PatronBase):
    """Schema for patron responses."""

    id: str
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


# ============================================================================
# Item Schemas
# ============================================================================


class ItemBase(BaseModel):
    """Base item fields."""

    title: str = Field(..., min_length=1, max_length=500)
    author: Optional[str] = Field(None, max_length=500)
    isbn: Optional[str] = Field(None, max_length=13)
    language: Optional[str] = Field(None, max_length=50)


class ItemCreate(ItemBase):
    """Schema for creating an item.

    ``available_copies`` defaults to ``total_copies`` (every copy on the shelf).
    """

    total_copies: int = Field(1, ge=0)
    available_copies: Optional[int] = Field(None, ge=0)

    @model_validator(mode="after")
    def available_within_total(self) -> "ItemCreate":
        """Validate 0 <= available_copies <= total_copies."""
        if self.available_copies is None:
            self.available_copies = self.total_copies
        elif self.available_copies > self.total_copies:
            raise ValueError("available_copies cannot exceed total_copies")
        return self


class ItemUpdate(BaseModel):
    """Schema for updating an item.

    Changing ``total_copies`` adds or withdraws copies on the shelf; the
    available count is never set through an update.
    """

    title: Optional[str] = Field(None, min_length=1, max_length=500)
    author: Optional[str] = Field(None, max_length=500)
    isbn: Optional[str] = Field(None, max_length=13)
    language: Optional[str] = Field(None, max_length=50)
    total_copies: Optional[int] = Field(None, ge=0)


class ItemResponse(ItemBase):
    """Schema for item responses."""

    id: str
    total_copies: int
    available_copies: int
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


# ============================================================================
# Loan Schemas
# ============================================================================


class LoanCreate(BaseModel):
    """Schema for creating a loan record."""

    patron_id: str = Field(..., min_length=1)
    item_id: str = Field(..., min_length=1)
    borrow_date: datetime
    due_date: datetime
    notes: Optional[str] = None

    @field_validator("due_date")
    @classmethod
    def due_after_borrow(cls, v, info):
        """Validate due date is after borrow date."""
        if "borrow_date" in info.data and v <= info.data["borrow_date"]:
            raise ValueError("due_date must be after borrow_date")
        return v


class LoanUpdate(BaseModel):
    """Schema for updating a loan.

    Status and return date are changed only by returning the loan.
    """

    due_date: Optional[datetime] = None
    notes: Optional[str] = None


class LoanResponse(BaseModel):
    """Schema for loan responses."""

    id: str
    patron_id: str
    item_id: str
    status: LoanStatus
    borrow_date: datetime
    due_date: datetime
    return_date: Optional[datetime]
    notes: Optional[str]
    is_overdue: bool
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}
