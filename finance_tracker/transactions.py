import logging

from .budgets import find_owned_budget
from .db import insert_returning_id
from .errors import NotFoundError
from .formatting import format_timestamp, to_number, utc_now_iso
from .users import ensure_user_currency

logger = logging.getLogger(__name__)

UPDATABLE_COLUMNS = ("type", "category", "amount", "occurred_at", "description", "budget_id")


def serialize_transaction(row):
    return {
        "id": row["id"],
        "userId": row["user_id"],
        "type": row["type"],
        "currency": row["currency"],
        "category": row["category"],
        "amount": to_number(row["amount"]),
        "occurredAt": format_timestamp(row["occurred_at"]),
        "description": row["description"],
        "budgetId": row["budget_id"],
        "createdAt": format_timestamp(row["created_at"]),
        "updatedAt": format_timestamp(row["updated_at"]),
    }


def find_owned_transaction(db, user_id, transaction_id):
    row = db.execute(
        "SELECT * FROM transactions WHERE id = ? AND user_id = ?",
        (transaction_id, user_id),
    ).fetchone()
    if row is None:
        raise NotFoundError("Transaction not found")
    return row


def list_transactions(db, user_id):
    rows = db.execute(
        "SELECT * FROM transactions WHERE user_id = ? ORDER BY occurred_at DESC, id DESC",
        (user_id,),
    ).fetchall()
    return [serialize_transaction(row) for row in rows]


def create_transaction(db, user_id, type, category, amount, occurred_at, description=None, budget_id=None):
    currency = ensure_user_currency(db, user_id)
    if budget_id is not None:
        find_owned_budget(db, user_id, budget_id)

    now = utc_now_iso()
    transaction_id = insert_returning_id(
        db,
        """
        INSERT INTO transactions (
            user_id, type, currency, category, amount, occurred_at, description, budget_id, created_at, updated_at
        )
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (user_id, type, currency, category, float(amount), occurred_at, description, budget_id, now, now),
    )
    db.commit()
    return serialize_transaction(find_owned_transaction(db, user_id, transaction_id))


def update_transaction(db, user_id, transaction_id, **changes):
    existing = find_owned_transaction(db, user_id, transaction_id)
    updates = {key: value for key, value in changes.items() if key in UPDATABLE_COLUMNS}
    if not updates:
        return serialize_transaction(existing)

    if updates.get("budget_id") is not None:
        find_owned_budget(db, user_id, updates["budget_id"])
    if "amount" in updates:
        updates["amount"] = float(updates["amount"])

    set_parts = [f"{column} = ?" for column in updates]
    params = list(updates.values())
    set_parts.append("updated_at = ?")
    params.extend([utc_now_iso(), transaction_id, user_id])
    db.execute(f"UPDATE transactions SET {', '.join(set_parts)} WHERE id = ? AND user_id = ?", params)
    db.commit()
    return serialize_transaction(find_owned_transaction(db, user_id, transaction_id))


def delete_transaction(db, user_id, transaction_id):
    find_owned_transaction(db, user_id, transaction_id)
    db.execute("DELETE FROM transactions WHERE id = ? AND user_id = ?", (transaction_id, user_id))
    db.commit()
    logger.info("Deleted transaction id=%s user_id=%s", transaction_id, user_id)
