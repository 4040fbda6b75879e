import random
from datetime import datetime, timedelta, timezone

from .assets import create_asset, ensure_default_groups
from .budgets import create_budget
from .categories import ensure_defaults
from .formatting import format_timestamp
from .transactions import create_transaction
from .users import register_user, update_currency

DEMO_EMAIL = "demo@finance-tracker.local"
DEMO_PASSWORD = "password123"

EXPENSE_LABELS = ["Food", "Transport", "Household", "Health", "Social Life", "Pet Food"]


def seed_demo_data(db, days=90, seed=None):
    """Create the demo user with a few months of activity; no-op if it exists."""
    existing = db.execute("SELECT id FROM users WHERE email = ?", (DEMO_EMAIL,)).fetchone()
    if existing is not None:
        return DEMO_EMAIL

    rng = random.Random(seed)
    user = register_user(db, DEMO_EMAIL, DEMO_PASSWORD, display_name="Demo User")
    user_id = user["id"]
    update_currency(db, user_id, "USD")
    ensure_defaults(db, user_id)
    ensure_default_groups(db, user_id)

    today = datetime.now(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)
    start = today - timedelta(days=days)
    budget = create_budget(
        db,
        user_id,
        "Groceries",
        400,
        format_timestamp(today.replace(day=1)),
        format_timestamp(today.replace(day=1) + timedelta(days=31)),
    )

    for month in range(days // 30 + 1):
        create_transaction(
            db,
            user_id,
            "INCOME",
            "Salary",
            3200,
            format_timestamp(start + timedelta(days=30 * month)),
            description="Monthly salary",
        )

    for i in range(40):
        occurred_at = start + timedelta(days=i * 2)
        category = rng.choice(EXPENSE_LABELS)
        create_transaction(
            db,
            user_id,
            "EXPENSE",
            category,
            round(rng.uniform(5, 200), 2),
            format_timestamp(occurred_at),
            description=f"Sample expense {i + 1}",
            budget_id=budget["id"] if category == "Food" and occurred_at >= today.replace(day=1) else None,
        )

    groups = {
        row["name"]: row["id"]
        for row in db.execute("SELECT id, name FROM asset_groups WHERE user_id = ?", (user_id,)).fetchall()
    }
    create_asset(db, user_id, "Checking account", 2500, group_id=groups.get("Accounts"))
    create_asset(db, user_id, "Emergency fund", 6000, group_id=groups.get("Savings"))
    create_asset(db, user_id, "Wallet", 80, group_id=groups.get("Cash"))
    return DEMO_EMAIL
