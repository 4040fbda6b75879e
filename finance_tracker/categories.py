import logging
import unicodedata
from collections import defaultdict, namedtuple

from .db import INTEGRITY_ERRORS, insert_returning_id, is_unique_violation, transaction
from .errors import ConflictError, NotFoundError, ValidationError
from .formatting import format_timestamp, utc_now_iso

logger = logging.getLogger(__name__)

DefaultCategory = namedtuple("DefaultCategory", ["type", "name", "subcategories"])

DEFAULT_CATEGORIES = (
    DefaultCategory("EXPENSE", "Food", ()),
    DefaultCategory("EXPENSE", "Social Life", ()),
    DefaultCategory("EXPENSE", "Pets", ("Pet Food", "Cat Litter", "Grooming")),
    DefaultCategory("EXPENSE", "Transport", ()),
    DefaultCategory("EXPENSE", "Culture", ()),
    DefaultCategory("EXPENSE", "Household", ()),
    DefaultCategory("EXPENSE", "Beauty", ()),
    DefaultCategory("EXPENSE", "Health", ()),
    DefaultCategory("EXPENSE", "Education", ()),
    DefaultCategory("EXPENSE", "Gift", ()),
    DefaultCategory("EXPENSE", "Installment", ()),
    DefaultCategory("INCOME", "Allowance", ()),
    DefaultCategory("INCOME", "Salary", ()),
    DefaultCategory("INCOME", "Petty Cash", ()),
    DefaultCategory("INCOME", "Bonus", ()),
    DefaultCategory("INCOME", "Other", ()),
)


def name_sort_key(name):
    stripped = unicodedata.normalize("NFKD", name)
    stripped = "".join(ch for ch in stripped if not unicodedata.combining(ch))
    # lower case sorts ahead of upper case when the letters otherwise tie
    return (stripped.casefold(), name.swapcase())


def serialize_category(row, subcategories=None):
    return {
        "id": row["id"],
        "userId": row["user_id"],
        "parentId": row["parent_id"],
        "name": row["name"],
        "type": row["type"],
        "isDefault": bool(row["is_default"]),
        "createdAt": format_timestamp(row["created_at"]),
        "updatedAt": format_timestamp(row["updated_at"]),
        "subcategories": subcategories or [],
    }


def build_tree(categories):
    """Nest a flat list of category rows under their parents.

    Siblings are ordered by name at every level. Rows whose parent is not part
    of ``categories`` are unreachable from the roots and are left out.
    """
    by_parent = defaultdict(list)
    for category in categories:
        by_parent[category["parent_id"]].append(category)

    def assign_children(parent_id):
        siblings = sorted(by_parent.get(parent_id, ()), key=lambda item: name_sort_key(item["name"]))
        return [serialize_category(item, assign_children(item["id"])) for item in siblings]

    return assign_children(None)


def _find_by_name(db, user_id, category_type, name, parent_id):
    if parent_id is None:
        return db.execute(
            """
            SELECT id, is_default FROM categories
            WHERE user_id = ? AND type = ? AND name = ? AND parent_id IS NULL
            """,
            (user_id, category_type, name),
        ).fetchone()
    return db.execute(
        """
        SELECT id, is_default FROM categories
        WHERE user_id = ? AND type = ? AND name = ? AND parent_id = ?
        """,
        (user_id, category_type, name, parent_id),
    ).fetchone()


def _provision_default(db, user_id, category_type, name, parent_id, now):
    inserted = db.execute(
        """
        INSERT INTO categories (user_id, parent_id, name, type, is_default, created_at, updated_at)
        VALUES (?, ?, ?, ?, 1, ?, ?)
        ON CONFLICT DO NOTHING
        """,
        (user_id, parent_id, name, category_type, now, now),
    ).rowcount
    row = _find_by_name(db, user_id, category_type, name, parent_id)
    if not row["is_default"]:
        db.execute(
            "UPDATE categories SET is_default = 1, updated_at = ? WHERE id = ?",
            (now, row["id"]),
        )
    return row["id"], inserted > 0


def ensure_defaults(db, user_id, defaults=DEFAULT_CATEGORIES):
    """Make sure every category of ``defaults`` exists for the user, flagged as default.

    A same-named category the user created earlier is adopted rather than
    duplicated. Everything happens in one transaction: either every missing
    default is created or, on error, none is and the error propagates.
    """
    if not defaults:
        return

    now = utc_now_iso()
    created = 0
    with transaction(db):
        for default in defaults:
            root_id, root_created = _provision_default(db, user_id, default.type, default.name, None, now)
            created += root_created
            for subcategory in default.subcategories:
                _, sub_created = _provision_default(db, user_id, default.type, subcategory, root_id, now)
                created += sub_created

    if created:
        logger.info("Provisioned %s default categories for user_id=%s", created, user_id)


def find_owned_category(db, user_id, category_id):
    category = db.execute(
        "SELECT * FROM categories WHERE id = ? AND user_id = ?",
        (category_id, user_id),
    ).fetchone()
    if category is None:
        raise NotFoundError("Category not found")
    return category


def list_categories(db, user_id):
    ensure_defaults(db, user_id)
    categories = db.execute(
        "SELECT * FROM categories WHERE user_id = ? ORDER BY type, parent_id, name",
        (user_id,),
    ).fetchall()
    return build_tree(categories)


def create_category(db, user_id, name, category_type=None, parent_id=None):
    ensure_defaults(db, user_id)

    trimmed = (name or "").strip()
    if not trimmed:
        raise ValidationError("Category name is required")

    if parent_id is not None:
        parent = find_owned_category(db, user_id, parent_id)
        category_type = parent["type"]
    elif not category_type:
        raise ValidationError("Category type is required")

    now = utc_now_iso()
    try:
        category_id = insert_returning_id(
            db,
            """
            INSERT INTO categories (user_id, parent_id, name, type, is_default, created_at, updated_at)
            VALUES (?, ?, ?, ?, 0, ?, ?)
            """,
            (user_id, parent_id, trimmed, category_type, now, now),
        )
        db.commit()
    except INTEGRITY_ERRORS as exc:
        db.rollback()
        if is_unique_violation(exc):
            raise ConflictError("A category with this name already exists") from exc
        raise

    logger.info("Created category id=%s user_id=%s parent_id=%s", category_id, user_id, parent_id)
    return serialize_category(find_owned_category(db, user_id, category_id))


def update_category(db, user_id, category_id, name=None):
    category = find_owned_category(db, user_id, category_id)
    if category["is_default"]:
        raise ValidationError("Default categories cannot be modified")

    if name is None:
        return serialize_category(category)

    trimmed = name.strip()
    if not trimmed:
        raise ValidationError("Category name is required")

    try:
        db.execute(
            "UPDATE categories SET name = ?, updated_at = ? WHERE id = ? AND user_id = ?",
            (trimmed, utc_now_iso(), category_id, user_id),
        )
        db.commit()
    except INTEGRITY_ERRORS as exc:
        db.rollback()
        if is_unique_violation(exc):
            raise ConflictError("A category with this name already exists") from exc
        raise

    return serialize_category(find_owned_category(db, user_id, category_id))


def delete_category(db, user_id, category_id):
    category = find_owned_category(db, user_id, category_id)
    if category["is_default"]:
        raise ValidationError("Default categories cannot be removed")

    child_count = db.execute(
        "SELECT COUNT(*) AS total FROM categories WHERE parent_id = ? AND user_id = ?",
        (category_id, user_id),
    ).fetchone()["total"]
    if child_count > 0:
        raise ConflictError("Remove subcategories before deleting this category")

    db.execute("DELETE FROM categories WHERE id = ? AND user_id = ?", (category_id, user_id))
    db.commit()
    logger.info("Deleted category id=%s user_id=%s", category_id, user_id)
