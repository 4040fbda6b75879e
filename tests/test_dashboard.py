import pytest

from finance_tracker.assets import create_asset
from finance_tracker.budgets import create_budget
from finance_tracker.dashboard import build_window_filter, overview
from finance_tracker.errors import ValidationError
from finance_tracker.transactions import create_transaction


def test_overview_for_new_user_is_all_zero(app, make_user):
    user_id = make_user()

    result = overview(app.connect_db, user_id)

    assert result == {
        "totals": {"income": 0, "expense": 0, "net": 0, "assets": 0},
        "recentTransactions": [],
        "budgets": [],
        "assets": [],
    }


def test_overview_windows_transaction_totals(app, db, make_user):
    user_id = make_user()
    create_transaction(db, user_id, "INCOME", "Salary", 100, "2024-01-01T00:00:00.000Z")
    create_transaction(db, user_id, "EXPENSE", "Food", 40, "2024-02-01T00:00:00.000Z")

    everything = overview(app.connect_db, user_id)
    windowed = overview(app.connect_db, user_id, start="2024-01-15")

    assert everything["totals"] == {"income": 100, "expense": 40, "net": 60, "assets": 0}
    assert windowed["totals"]["income"] == 0
    assert windowed["totals"]["expense"] == 40
    assert windowed["totals"]["net"] == -40
    assert [item["category"] for item in windowed["recentTransactions"]] == ["Food"]


def test_overview_upper_bound_is_inclusive(app, db, make_user):
    user_id = make_user()
    create_transaction(db, user_id, "EXPENSE", "Food", 15, "2024-03-31T00:00:00.000Z")
    create_transaction(db, user_id, "EXPENSE", "Food", 25, "2024-04-02T00:00:00.000Z")

    result = overview(app.connect_db, user_id, start="2024-03-01", end="2024-03-31")

    assert result["totals"]["expense"] == 15


def test_overview_rejects_inverted_window_before_querying():
    def connect():
        pytest.fail("no query should run for an inverted window")

    with pytest.raises(ValidationError):
        overview(connect, 1, start="2024-03-01", end="2024-01-01")


def test_overview_rejects_unparseable_dates():
    def connect():
        pytest.fail("no query should run for a malformed window")

    with pytest.raises(ValidationError):
        overview(connect, 1, start="not-a-date")


def test_budget_spent_ignores_the_dashboard_window(app, db, make_user):
    user_id = make_user()
    budget = create_budget(db, user_id, "Groceries", 100, "2024-03-01T00:00:00.000Z", "2024-03-31T00:00:00.000Z")
    create_transaction(db, user_id, "EXPENSE", "Food", 30, "2024-03-05T00:00:00.000Z", budget_id=budget["id"])
    create_transaction(db, user_id, "EXPENSE", "Food", 20, "2024-03-06T00:00:00.000Z", budget_id=budget["id"])
    create_transaction(db, user_id, "INCOME", "Refund", 500, "2024-03-07T00:00:00.000Z", budget_id=budget["id"])
    create_transaction(db, user_id, "EXPENSE", "Food", 70, "2024-03-08T00:00:00.000Z")

    for window in ({}, {"start": "2025-01-01"}, {"start": "2024-03-06", "end": "2024-03-06"}):
        result = overview(app.connect_db, user_id, **window)
        assert len(result["budgets"]) == 1
        assert result["budgets"][0]["spent"] == 50
        assert result["budgets"][0]["targetAmount"] == 100


def test_overview_recent_transactions_are_latest_five(app, db, make_user):
    user_id = make_user()
    for day in range(1, 7):
        create_transaction(db, user_id, "EXPENSE", f"Day {day}", day, f"2024-05-0{day}T00:00:00.000Z")
    create_transaction(db, user_id, "EXPENSE", "Day 6 again", 1, "2024-05-06T00:00:00.000Z")

    recent = overview(app.connect_db, user_id)["recentTransactions"]

    assert [item["category"] for item in recent] == ["Day 6", "Day 6 again", "Day 5", "Day 4", "Day 3"]
    assert recent[0]["occurredAt"] == "2024-05-06T00:00:00.000Z"
    assert recent[0]["currency"] == "USD"
    assert recent[0]["amount"] == 6


def test_overview_orders_budgets_and_assets_and_totals_assets(app, db, make_user):
    user_id = make_user()
    create_budget(db, user_id, "January", 10, "2024-01-01T00:00:00.000Z", "2024-01-31T00:00:00.000Z")
    create_budget(db, user_id, "March", 10, "2024-03-01T00:00:00.000Z", "2024-03-31T00:00:00.000Z")
    create_asset(db, user_id, "Wallet", 80)
    create_asset(db, user_id, "Savings", 1200.5)
    create_asset(db, user_id, "Empty jar", 0)

    result = overview(app.connect_db, user_id, max_workers=1)

    assert [budget["name"] for budget in result["budgets"]] == ["March", "January"]
    assert [asset["name"] for asset in result["assets"]] == ["Savings", "Wallet", "Empty jar"]
    assert result["totals"]["assets"] == 1280.5


def test_overview_only_reads_the_owners_records(app, db, make_user):
    owner = make_user()
    other = make_user("other@example.com")
    create_transaction(db, other, "INCOME", "Salary", 999, "2024-01-01T00:00:00.000Z")
    create_asset(db, other, "Car", 5000)
    create_budget(db, other, "Trip", 300, "2024-01-01T00:00:00.000Z", "2024-02-01T00:00:00.000Z")

    result = overview(app.connect_db, owner)

    assert result["totals"] == {"income": 0, "expense": 0, "net": 0, "assets": 0}
    assert result["budgets"] == []
    assert result["assets"] == []


def test_build_window_filter():
    assert build_window_filter(7) == ("user_id = ?", [7])
    assert build_window_filter(7, "a", "b") == (
        "user_id = ? AND occurred_at >= ? AND occurred_at <= ?",
        [7, "a", "b"],
    )
