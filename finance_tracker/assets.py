import logging

from .db import INTEGRITY_ERRORS, insert_returning_id, is_unique_violation
from .errors import ConflictError, NotFoundError, ValidationError
from .formatting import format_timestamp, to_number, utc_now_iso
from .users import ensure_user_currency

logger = logging.getLogger(__name__)

DEFAULT_ASSET_GROUPS = ("Cash", "Accounts", "Debit card", "Savings", "Investments", "Insurance")

ASSET_SELECT = """
    SELECT a.*, g.name AS group_name, g.is_default AS group_is_default,
           g.created_at AS group_created_at, g.updated_at AS group_updated_at
    FROM assets a
    LEFT JOIN asset_groups g ON g.id = a.group_id
"""


def serialize_asset_group(row):
    return {
        "id": row["id"],
        "userId": row["user_id"],
        "name": row["name"],
        "isDefault": bool(row["is_default"]),
        "createdAt": format_timestamp(row["created_at"]),
        "updatedAt": format_timestamp(row["updated_at"]),
    }


def serialize_asset(row):
    group = None
    if row["group_id"] is not None:
        group = {
            "id": row["group_id"],
            "userId": row["user_id"],
            "name": row["group_name"],
            "isDefault": bool(row["group_is_default"]),
            "createdAt": format_timestamp(row["group_created_at"]),
            "updatedAt": format_timestamp(row["group_updated_at"]),
        }
    return {
        "id": row["id"],
        "userId": row["user_id"],
        "name": row["name"],
        "groupId": row["group_id"],
        "group": group,
        "currentValue": to_number(row["current_value"]),
        "createdAt": format_timestamp(row["created_at"]),
        "updatedAt": format_timestamp(row["updated_at"]),
    }


def ensure_default_groups(db, user_id):
    now = utc_now_iso()
    for name in DEFAULT_ASSET_GROUPS:
        db.execute(
            """
            INSERT INTO asset_groups (user_id, name, is_default, created_at, updated_at)
            VALUES (?, ?, 1, ?, ?)
            ON CONFLICT DO NOTHING
            """,
            (user_id, name, now, now),
        )
    db.commit()


def find_owned_group(db, user_id, group_id):
    group = db.execute(
        "SELECT * FROM asset_groups WHERE id = ? AND user_id = ?",
        (group_id, user_id),
    ).fetchone()
    if group is None:
        raise NotFoundError("Asset group not found")
    return group


def list_asset_groups(db, user_id):
    ensure_default_groups(db, user_id)
    rows = db.execute(
        "SELECT * FROM asset_groups WHERE user_id = ? ORDER BY created_at ASC, id ASC",
        (user_id,),
    ).fetchall()
    return [serialize_asset_group(row) for row in rows]


def create_asset_group(db, user_id, name):
    ensure_user_currency(db, user_id)
    ensure_default_groups(db, user_id)

    trimmed = (name or "").strip()
    if not trimmed:
        raise ValidationError("Group name is required")

    now = utc_now_iso()
    try:
        group_id = insert_returning_id(
            db,
            """
            INSERT INTO asset_groups (user_id, name, is_default, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            (user_id, trimmed, int(trimmed in DEFAULT_ASSET_GROUPS), now, now),
        )
        db.commit()
    except INTEGRITY_ERRORS as exc:
        db.rollback()
        if is_unique_violation(exc):
            raise ConflictError("You already have a group with this name") from exc
        raise

    return serialize_asset_group(find_owned_group(db, user_id, group_id))


def find_owned_asset(db, user_id, asset_id):
    row = db.execute(f"{ASSET_SELECT} WHERE a.id = ? AND a.user_id = ?", (asset_id, user_id)).fetchone()
    if row is None:
        raise NotFoundError("Asset not found")
    return row


def list_assets(db, user_id):
    rows = db.execute(
        f"{ASSET_SELECT} WHERE a.user_id = ? ORDER BY a.created_at DESC, a.id DESC",
        (user_id,),
    ).fetchall()
    return [serialize_asset(row) for row in rows]


def create_asset(db, user_id, name, current_value, group_id=None):
    ensure_user_currency(db, user_id)
    if group_id is not None:
        find_owned_group(db, user_id, group_id)

    now = utc_now_iso()
    asset_id = insert_returning_id(
        db,
        """
        INSERT INTO assets (user_id, group_id, name, current_value, created_at, updated_at)
        VALUES (?, ?, ?, ?, ?, ?)
        """,
        (user_id, group_id, name, float(current_value), now, now),
    )
    db.commit()
    return serialize_asset(find_owned_asset(db, user_id, asset_id))


def update_asset(db, user_id, asset_id, **changes):
    existing = find_owned_asset(db, user_id, asset_id)
    updates = {key: value for key, value in changes.items() if key in ("name", "current_value", "group_id")}
    if not updates:
        return serialize_asset(existing)

    if updates.get("group_id") is not None:
        find_owned_group(db, user_id, updates["group_id"])
    if "current_value" in updates:
        updates["current_value"] = float(updates["current_value"])

    set_parts = [f"{column} = ?" for column in updates]
    params = list(updates.values())
    set_parts.append("updated_at = ?")
    params.extend([utc_now_iso(), asset_id, user_id])
    db.execute(f"UPDATE assets SET {', '.join(set_parts)} WHERE id = ? AND user_id = ?", params)
    db.commit()
    return serialize_asset(find_owned_asset(db, user_id, asset_id))


def delete_asset(db, user_id, asset_id):
    find_owned_asset(db, user_id, asset_id)
    db.execute("DELETE FROM assets WHERE id = ? AND user_id = ?", (asset_id, user_id))
    db.commit()
    logger.info("Deleted asset id=%s user_id=%s", asset_id, user_id)
