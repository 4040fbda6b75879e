import logging

from .db import insert_returning_id
from .errors import NotFoundError, ValidationError
from .formatting import format_timestamp, to_number, utc_now_iso
from .users import ensure_user_currency

logger = logging.getLogger(__name__)

UPDATABLE_COLUMNS = ("name", "target_amount", "period_start", "period_end")


def serialize_budget(row):
    return {
        "id": row["id"],
        "userId": row["user_id"],
        "name": row["name"],
        "targetAmount": to_number(row["target_amount"]),
        "periodStart": format_timestamp(row["period_start"]),
        "periodEnd": format_timestamp(row["period_end"]),
        "createdAt": format_timestamp(row["created_at"]),
        "updatedAt": format_timestamp(row["updated_at"]),
    }


def find_owned_budget(db, user_id, budget_id):
    budget = db.execute(
        "SELECT * FROM budgets WHERE id = ? AND user_id = ?",
        (budget_id, user_id),
    ).fetchone()
    if budget is None:
        raise NotFoundError("Budget not found")
    return budget


def _check_period(period_start, period_end):
    if period_start > period_end:
        raise ValidationError("periodEnd must not be earlier than periodStart")


def list_budgets(db, user_id):
    rows = db.execute(
        "SELECT * FROM budgets WHERE user_id = ? ORDER BY period_start DESC, id DESC",
        (user_id,),
    ).fetchall()
    return [serialize_budget(row) for row in rows]


def create_budget(db, user_id, name, target_amount, period_start, period_end):
    ensure_user_currency(db, user_id)
    _check_period(period_start, period_end)

    now = utc_now_iso()
    budget_id = insert_returning_id(
        db,
        """
        INSERT INTO budgets (user_id, name, target_amount, period_start, period_end, created_at, updated_at)
        VALUES (?, ?, ?, ?, ?, ?, ?)
        """,
        (user_id, name, float(target_amount), period_start, period_end, now, now),
    )
    db.commit()
    return serialize_budget(find_owned_budget(db, user_id, budget_id))


def update_budget(db, user_id, budget_id, **changes):
    existing = find_owned_budget(db, user_id, budget_id)
    updates = {key: value for key, value in changes.items() if key in UPDATABLE_COLUMNS}
    if not updates:
        return serialize_budget(existing)

    _check_period(
        updates.get("period_start", existing["period_start"]),
        updates.get("period_end", existing["period_end"]),
    )
    if "target_amount" in updates:
        updates["target_amount"] = float(updates["target_amount"])

    set_parts = [f"{column} = ?" for column in updates]
    params = list(updates.values())
    set_parts.append("updated_at = ?")
    params.extend([utc_now_iso(), budget_id, user_id])
    db.execute(f"UPDATE budgets SET {', '.join(set_parts)} WHERE id = ? AND user_id = ?", params)
    db.commit()
    return serialize_budget(find_owned_budget(db, user_id, budget_id))


def delete_budget(db, user_id, budget_id):
    find_owned_budget(db, user_id, budget_id)
    db.execute(
        "UPDATE transactions SET budget_id = NULL WHERE budget_id = ? AND user_id = ?",
        (budget_id, user_id),
    )
    db.execute("DELETE FROM budgets WHERE id = ? AND user_id = ?", (budget_id, user_id))
    db.commit()
    logger.info("Deleted budget id=%s user_id=%s", budget_id, user_id)
