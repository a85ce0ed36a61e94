from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Optional

from sqlalchemy import ColumnElement, delete, extract, func, select, update
from sqlalchemy.orm import Session

from ai_services import CategorizationService, CategoryResolution, Fallback
from models import ALL_CATEGORIES, Expense, User
from periods import Period, month_label, month_period, trailing_months
from schemas import BudgetIn, ExpenseIn, ExpenseUpdate


logger = logging.getLogger(__name__)

TREND_MONTHS = 6
# Highest threshold first; percentages of the monthly budget.
BUDGET_THRESHOLDS = ((100.0, "over"), (90.0, "critical"), (80.0, "warning"))


class ExpenseNotFound(ValueError):
    pass


class UserNotFound(ValueError):
    pass


class DuplicateEmail(ValueError):
    pass


def cents_to_amount(cents: int) -> float:
    return cents / 100


@dataclass
class ExpenseFilters:
    month: Optional[int] = None
    year: Optional[int] = None
    category: Optional[str] = None
    search: Optional[str] = None

    def __post_init__(self) -> None:
        if self.month is not None and self.year is not None:
            month_period(self.year, self.month)

    @property
    def period(self) -> Optional[Period]:
        if self.month is None or self.year is None:
            return None
        return month_period(self.year, self.month)

    def clauses(self, user_id: int) -> list[ColumnElement[bool]]:
        """Predicates for the owner's expenses matching every supplied filter."""
        clauses: list[ColumnElement[bool]] = [Expense.user_id == user_id]
        period = self.period
        if period is not None:
            clauses.append(Expense.date.between(period.start, period.end))
        if self.category and self.category != ALL_CATEGORIES:
            clauses.append(Expense.category == self.category)
        if self.search:
            clauses.append(
                func.lower(Expense.description).contains(
                    self.search.lower(), autoescape=True
                )
            )
        return clauses


class UserService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, user_id: int) -> User:
        user = self.session.get(User, user_id)
        if not user:
            raise UserNotFound("User not found")
        return user

    def get_by_email(self, email: str) -> Optional[User]:
        return self.session.scalar(
            select(User).where(func.lower(User.email) == email.strip().lower())
        )

    def create(self, email: str, name: str, password_hash: str) -> User:
        if self.get_by_email(email):
            raise DuplicateEmail("Email already registered")
        user = User(
            email=email.strip().lower(),
            name=name.strip(),
            password_hash=password_hash,
        )
        self.session.add(user)
        self.session.commit()
        self.session.refresh(user)
        return user


class ExpenseService:
    def __init__(
        self,
        session: Session,
        user_id: int,
        categorizer: Optional[CategorizationService] = None,
    ) -> None:
        self.session = session
        self.user_id = user_id
        self.categorizer = categorizer or CategorizationService(None)

    def create(
        self, data: ExpenseIn, *, today: Optional[date] = None
    ) -> tuple[Expense, CategoryResolution]:
        resolution = self.categorizer.resolve(data.description, data.category)
        expense = Expense(
            user_id=self.user_id,
            amount_cents=data.amount_cents,
            description=data.description,
            category=resolution.category,
            date=data.date or today or date.today(),
        )
        self.session.add(expense)
        self.session.commit()
        self.session.refresh(expense)
        source = "fallback" if isinstance(resolution, Fallback) else resolution.source
        logger.info(
            f"expense_created: user_id={self.user_id} id={expense.id} "
            f"category={expense.category} source={source}"
        )
        return expense, resolution

    def get(self, expense_id: int) -> Expense:
        expense = self.session.scalar(
            select(Expense).where(
                Expense.id == expense_id, Expense.user_id == self.user_id
            )
        )
        if not expense:
            raise ExpenseNotFound("Expense not found")
        return expense

    def update(self, expense_id: int, data: ExpenseUpdate) -> Expense:
        expense = self.get(expense_id)
        expense.amount_cents = data.amount_cents
        expense.description = data.description
        expense.category = data.category
        expense.date = data.date
        self.session.commit()
        self.session.refresh(expense)
        return expense

    def delete(self, expense_id: int) -> None:
        result = self.session.execute(
            delete(Expense).where(
                Expense.id == expense_id, Expense.user_id == self.user_id
            )
        )
        self.session.commit()
        if result.rowcount == 0:
            raise ExpenseNotFound("Expense not found")

    def list(self, filters: Optional[ExpenseFilters] = None) -> list[Expense]:
        filters = filters or ExpenseFilters()
        stmt = (
            select(Expense)
            .where(*filters.clauses(self.user_id))
            .order_by(
                Expense.date.desc(), Expense.created_at.desc(), Expense.id.desc()
            )
        )
        return list(self.session.scalars(stmt).all())


@dataclass
class MonthStats:
    year: int
    month: int
    total_spent_cents: int = 0
    expense_count: int = 0
    by_category: list[dict[str, object]] = field(default_factory=list)
    monthly_trend: list[dict[str, object]] = field(default_factory=list)


class StatsService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def _month_clauses(self, year: int, month: int) -> list[ColumnElement[bool]]:
        return ExpenseFilters(month=month, year=year).clauses(self.user_id)

    def total_spent(self, year: int, month: int) -> int:
        stmt = select(func.coalesce(func.sum(Expense.amount_cents), 0)).where(
            *self._month_clauses(year, month)
        )
        return int(self.session.execute(stmt).scalar_one() or 0)

    def expense_count(self, year: int, month: int) -> int:
        stmt = select(func.count(Expense.id)).where(*self._month_clauses(year, month))
        return int(self.session.execute(stmt).scalar_one() or 0)

    def by_category(self, year: int, month: int) -> list[dict[str, object]]:
        total = func.sum(Expense.amount_cents)
        stmt = (
            select(
                Expense.category.label("category"),
                total.label("total"),
                func.count(Expense.id).label("expense_count"),
            )
            .where(*self._month_clauses(year, month))
            .group_by(Expense.category)
            .order_by(total.desc(), Expense.category.asc())
        )
        return [
            {
                "category": row.category,
                "total_cents": int(row.total or 0),
                "count": int(row.expense_count or 0),
            }
            for row in self.session.execute(stmt).all()
        ]

    def monthly_trend(
        self, *, months: int = TREND_MONTHS, today: Optional[date] = None
    ) -> list[dict[str, object]]:
        period = trailing_months(months, today=today)
        year_num = extract("year", Expense.date)
        month_num = extract("month", Expense.date)
        stmt = (
            select(
                year_num.label("year_num"),
                month_num.label("month_num"),
                func.sum(Expense.amount_cents).label("total"),
            )
            .where(
                Expense.user_id == self.user_id,
                Expense.date.between(period.start, period.end),
            )
            .group_by(year_num, month_num)
            .order_by(year_num, month_num)
        )
        trend = []
        for row in self.session.execute(stmt).all():
            y = int(row.year_num)
            m = int(row.month_num)
            trend.append(
                {
                    "month": month_label(y, m),
                    "month_num": m,
                    "year_num": y,
                    "total_cents": int(row.total or 0),
                }
            )
        return trend

    def month_stats(
        self, year: int, month: int, *, today: Optional[date] = None
    ) -> MonthStats:
        return MonthStats(
            year=year,
            month=month,
            total_spent_cents=self.total_spent(year, month),
            expense_count=self.expense_count(year, month),
            by_category=self.by_category(year, month),
            monthly_trend=self.monthly_trend(today=today),
        )


@dataclass(frozen=True)
class BudgetStatus:
    budget_cents: int
    spent_cents: int

    @property
    def percent_used(self) -> float:
        if self.budget_cents <= 0:
            return 0.0
        return self.spent_cents / self.budget_cents * 100

    @property
    def remaining_cents(self) -> int:
        return self.budget_cents - self.spent_cents

    @property
    def level(self) -> str:
        percent = self.percent_used
        for threshold, name in BUDGET_THRESHOLDS:
            if percent >= threshold:
                return name
        return "ok"


class BudgetService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def get_monthly_budget(self) -> int:
        value = self.session.scalar(
            select(User.monthly_budget_cents).where(User.id == self.user_id)
        )
        return int(value or 0)

    def set_monthly_budget(self, data: BudgetIn) -> int:
        result = self.session.execute(
            update(User)
            .where(User.id == self.user_id)
            .values(monthly_budget_cents=data.monthly_budget_cents)
        )
        self.session.commit()
        if result.rowcount == 0:
            raise UserNotFound("User not found")
        return data.monthly_budget_cents

    def status(self, year: int, month: int) -> BudgetStatus:
        spent = StatsService(self.session, self.user_id).total_spent(year, month)
        return BudgetStatus(budget_cents=self.get_monthly_budget(), spent_cents=spent)
