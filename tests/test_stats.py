from datetime import date

from schemas import ExpenseIn
from services import ExpenseFilters, ExpenseService, StatsService, UserService


def _seed(session, user_id: int, rows) -> None:
    service = ExpenseService(session, user_id)
    for cents, note, on, category in rows:
        service.create(
            ExpenseIn(amount_cents=cents, description=note, date=on, category=category)
        )


def test_month_stats_totals_and_breakdown(session) -> None:
    user = UserService(session).create("a@example.com", "A", "hash")
    _seed(
        session,
        user.id,
        [
            (1250, "Dinner", date(2024, 3, 3), "Food & Dining"),
            (750, "Lunch", date(2024, 3, 4), "Food & Dining"),
            (2000, "Taxi", date(2024, 3, 5), "Transportation"),
            (2000, "Cinema", date(2024, 3, 6), "Entertainment"),
            (9999, "April", date(2024, 4, 1), "Shopping"),
        ],
    )

    stats = StatsService(session, user.id).month_stats(2024, 3, today=date(2024, 3, 20))

    assert stats.total_spent_cents == 6000
    assert stats.expense_count == 4
    # equal totals fall back to category name order
    assert stats.by_category == [
        {"category": "Entertainment", "total_cents": 2000, "count": 1},
        {"category": "Food & Dining", "total_cents": 2000, "count": 2},
        {"category": "Transportation", "total_cents": 2000, "count": 1},
    ]


def test_empty_month_reports_zero(session) -> None:
    user = UserService(session).create("a@example.com", "A", "hash")

    stats = StatsService(session, user.id).month_stats(2024, 3, today=date(2024, 3, 1))

    assert stats.total_spent_cents == 0
    assert stats.expense_count == 0
    assert stats.by_category == []
    assert stats.monthly_trend == []


def test_trend_covers_six_calendar_months(session) -> None:
    user = UserService(session).create("a@example.com", "A", "hash")
    _seed(
        session,
        user.id,
        [
            (100, "Too old", date(2023, 12, 31), "Other"),
            (200, "New year", date(2024, 1, 1), "Other"),
            (300, "March one", date(2024, 3, 10), "Other"),
            (400, "March two", date(2024, 3, 20), "Other"),
            (500, "End of June", date(2024, 6, 30), "Other"),
            (600, "July", date(2024, 7, 1), "Other"),
        ],
    )

    trend = StatsService(session, user.id).monthly_trend(today=date(2024, 6, 15))

    assert trend == [
        {"month": "Jan 2024", "month_num": 1, "year_num": 2024, "total_cents": 200},
        {"month": "Mar 2024", "month_num": 3, "year_num": 2024, "total_cents": 700},
        {"month": "Jun 2024", "month_num": 6, "year_num": 2024, "total_cents": 500},
    ]


def test_trend_crosses_year_boundary(session) -> None:
    user = UserService(session).create("a@example.com", "A", "hash")
    _seed(
        session,
        user.id,
        [
            (100, "Aug", date(2023, 8, 31), "Other"),
            (200, "Sep", date(2023, 9, 1), "Other"),
            (300, "Feb", date(2024, 2, 2), "Other"),
        ],
    )

    trend = StatsService(session, user.id).monthly_trend(today=date(2024, 2, 10))

    assert [(r["year_num"], r["month_num"]) for r in trend] == [(2023, 9), (2024, 2)]


def test_total_matches_filtered_list(session) -> None:
    user = UserService(session).create("a@example.com", "A", "hash")
    other = UserService(session).create("b@example.com", "B", "hash")
    _seed(
        session,
        user.id,
        [
            (1999, "One", date(2024, 3, 1), "Other"),
            (501, "Two", date(2024, 3, 31), "Travel"),
            (4000, "Feb", date(2024, 2, 29), "Travel"),
        ],
    )
    _seed(session, other.id, [(7777, "Not mine", date(2024, 3, 15), "Other")])

    listed = ExpenseService(session, user.id).list(ExpenseFilters(month=3, year=2024))
    total = StatsService(session, user.id).total_spent(2024, 3)

    assert total == sum(e.amount_cents for e in listed) == 2500
