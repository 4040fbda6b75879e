import logging

from werkzeug.security import check_password_hash, generate_password_hash

from .db import INTEGRITY_ERRORS, insert_returning_id, is_unique_violation, transaction
from .errors import ConflictError, NotFoundError, UnauthorizedError
from .formatting import format_timestamp, utc_now_iso

logger = logging.getLogger(__name__)


def serialize_user(row):
    return {
        "id": row["id"],
        "email": row["email"],
        "displayName": row["display_name"],
        "role": row["role"],
        "currency": row["currency"],
        "createdAt": format_timestamp(row["created_at"]),
        "updatedAt": format_timestamp(row["updated_at"]),
    }


def get_user(db, user_id):
    user = db.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
    if user is None:
        raise NotFoundError("User not found")
    return user


def register_user(db, email, password, display_name=None):
    existing = db.execute("SELECT id FROM users WHERE email = ?", (email,)).fetchone()
    if existing is not None:
        raise ConflictError("Email already registered")

    now = utc_now_iso()
    try:
        user_id = insert_returning_id(
            db,
            """
            INSERT INTO users (email, password_hash, display_name, role, created_at, updated_at)
            VALUES (?, ?, ?, 'USER', ?, ?)
            """,
            (email, generate_password_hash(password), display_name, now, now),
        )
        db.commit()
    except INTEGRITY_ERRORS as exc:
        db.rollback()
        if is_unique_violation(exc):
            raise ConflictError("Email already registered") from exc
        raise

    logger.info("Registered user id=%s", user_id)
    return get_user(db, user_id)


def authenticate(db, email, password):
    user = db.execute("SELECT * FROM users WHERE email = ?", (email,)).fetchone()
    if user is None or not user["password_hash"] or not check_password_hash(user["password_hash"], password):
        raise UnauthorizedError("Invalid credentials")
    return user


def update_currency(db, user_id, currency):
    """Set the user's currency.

    Amounts are never converted, so switching away from an already chosen
    currency discards the user's transactions in the same unit of work.
    """
    with transaction(db):
        existing = get_user(db, user_id)
        if existing["currency"] == currency:
            return existing

        if existing["currency"] and existing["currency"] != currency:
            removed = db.execute("DELETE FROM transactions WHERE user_id = ?", (user_id,)).rowcount
            logger.warning(
                "Currency change %s -> %s for user_id=%s removed %s transactions",
                existing["currency"],
                currency,
                user_id,
                removed,
            )

        db.execute(
            "UPDATE users SET currency = ?, updated_at = ? WHERE id = ?",
            (currency, utc_now_iso(), user_id),
        )

    return get_user(db, user_id)


def ensure_user_currency(db, user_id):
    row = db.execute("SELECT currency FROM users WHERE id = ?", (user_id,)).fetchone()
    if row is None or not row["currency"]:
        raise ConflictError("Please set your currency before performing this action.")
    return row["currency"]
