"""Dashboard aggregation.

``overview`` answers one dashboard request: totals for the (optionally
windowed) period, the latest transactions, every budget with how much has been
spent against it, and every asset. The reads are independent, so they run side
by side on a thread pool with one connection each; nothing here writes.
"""

import logging
from concurrent.futures import ThreadPoolExecutor

from .assets import ASSET_SELECT, serialize_asset
from .budgets import serialize_budget
from .db import row_to_dict
from .errors import ValidationError
from .formatting import format_timestamp, parse_timestamp, to_number

logger = logging.getLogger(__name__)

DEFAULT_MAX_WORKERS = 6
RECENT_TRANSACTIONS_LIMIT = 5


def _normalize_bound(value):
    if value is None or value == "":
        return None
    if isinstance(value, str):
        try:
            value = parse_timestamp(value)
        except ValueError as exc:
            raise ValidationError(f"Invalid date: {value}") from exc
    return format_timestamp(value)


def build_window_filter(user_id, start=None, end=None):
    clauses = ["user_id = ?"]
    params = [user_id]
    if start is not None:
        clauses.append("occurred_at >= ?")
        params.append(start)
    if end is not None:
        clauses.append("occurred_at <= ?")
        params.append(end)
    return " AND ".join(clauses), params


def _fetch_all(connect, sql, params):
    conn = connect()
    try:
        return [row_to_dict(row) for row in conn.execute(sql, params).fetchall()]
    finally:
        conn.close()


def _fetch_total(connect, sql, params):
    conn = connect()
    try:
        row = conn.execute(sql, params).fetchone()
    finally:
        conn.close()
    return to_number(row["total"] if row is not None else None)


def serialize_recent_transaction(row):
    return {
        "id": row["id"],
        "type": row["type"],
        "category": row["category"],
        "amount": to_number(row["amount"]),
        "occurredAt": format_timestamp(row["occurred_at"]),
        "currency": row["currency"],
        "description": row["description"],
    }


def overview(
    connect,
    user_id,
    start=None,
    end=None,
    max_workers=DEFAULT_MAX_WORKERS,
    recent_limit=RECENT_TRANSACTIONS_LIMIT,
):
    """Compute the dashboard snapshot for ``user_id``.

    ``connect`` is a zero-argument callable returning a fresh connection; each
    read opens and closes its own. ``start``/``end`` bound the transaction
    totals and the recent list only: budgets and assets are never windowed,
    and a budget's ``spent`` covers every expense linked to it.
    """
    start = _normalize_bound(start)
    end = _normalize_bound(end)
    if start is not None and end is not None and start > end:
        raise ValidationError("`from` must be earlier than `to`")

    where_sql, params = build_window_filter(user_id, start, end)
    sum_sql = f"SELECT ROUND(COALESCE(SUM(amount), 0), 2) AS total FROM transactions WHERE {where_sql} AND type = ?"

    with ThreadPoolExecutor(max_workers=max_workers) as pool:
        income_future = pool.submit(_fetch_total, connect, sum_sql, params + ["INCOME"])
        expense_future = pool.submit(_fetch_total, connect, sum_sql, params + ["EXPENSE"])
        recent_future = pool.submit(
            _fetch_all,
            connect,
            f"SELECT * FROM transactions WHERE {where_sql} ORDER BY occurred_at DESC, id ASC LIMIT ?",
            params + [recent_limit],
        )
        budgets_future = pool.submit(
            _fetch_all,
            connect,
            "SELECT * FROM budgets WHERE user_id = ? ORDER BY period_start DESC, id DESC",
            [user_id],
        )
        assets_future = pool.submit(
            _fetch_all,
            connect,
            f"{ASSET_SELECT} WHERE a.user_id = ? ORDER BY a.current_value DESC, a.id ASC",
            [user_id],
        )
        assets_total_future = pool.submit(
            _fetch_total,
            connect,
            "SELECT ROUND(COALESCE(SUM(current_value), 0), 2) AS total FROM assets WHERE user_id = ?",
            [user_id],
        )

        income = income_future.result()
        expense = expense_future.result()
        recent = recent_future.result()
        budgets = budgets_future.result()
        assets = assets_future.result()
        assets_total = assets_total_future.result()

        spent_sql = (
            "SELECT ROUND(COALESCE(SUM(amount), 0), 2) AS total FROM transactions "
            "WHERE user_id = ? AND budget_id = ? AND type = 'EXPENSE'"
        )
        spent = list(pool.map(lambda budget: _fetch_total(connect, spent_sql, [user_id, budget["id"]]), budgets))

    budgets_with_progress = []
    for budget, budget_spent in zip(budgets, spent):
        item = serialize_budget(budget)
        item["spent"] = budget_spent
        budgets_with_progress.append(item)

    logger.debug(
        "Dashboard overview user_id=%s window=%s..%s budgets=%s assets=%s",
        user_id,
        start,
        end,
        len(budgets),
        len(assets),
    )

    return {
        "totals": {
            "income": income,
            "expense": expense,
            "net": income - expense,
            "assets": assets_total,
        },
        "recentTransactions": [serialize_recent_transaction(row) for row in recent],
        "budgets": budgets_with_progress,
        "assets": [serialize_asset(row) for row in assets],
    }
