import datetime as dt
from datetime import date
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from models import ALL_CATEGORIES, FALLBACK_CATEGORY

# Largest amount a DECIMAL(10,2) money column holds, in cents.
MAX_AMOUNT_CENTS = 9_999_999_999


class ExpenseIn(BaseModel):
    amount_cents: int = Field(..., gt=0, le=MAX_AMOUNT_CENTS)
    description: str = Field(..., min_length=1, max_length=500)
    date: Optional[dt.date] = None
    category: Optional[str] = Field(default=None, max_length=100)

    @field_validator("description")
    @classmethod
    def _strip_description(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Description is required")
        return value


class ExpenseUpdate(BaseModel):
    amount_cents: int = Field(..., gt=0, le=MAX_AMOUNT_CENTS)
    description: str = Field(..., min_length=1, max_length=500)
    date: date
    category: str = Field(default=FALLBACK_CATEGORY, min_length=1, max_length=100)

    @field_validator("description")
    @classmethod
    def _strip_description(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Description is required")
        return value

    @field_validator("category", mode="before")
    @classmethod
    def _default_category(cls, value):
        # "All" is the list-filter sentinel and is never stored.
        if value is None:
            return FALLBACK_CATEGORY
        if isinstance(value, str):
            value = value.strip()
            if not value or value == ALL_CATEGORIES:
                return FALLBACK_CATEGORY
        return value


class BudgetIn(BaseModel):
    monthly_budget_cents: int = Field(..., ge=0, le=MAX_AMOUNT_CENTS)
