import sqlite3
from concurrent.futures import ThreadPoolExecutor

import pytest

from finance_tracker.categories import (
    DEFAULT_CATEGORIES,
    DefaultCategory,
    build_tree,
    create_category,
    delete_category,
    ensure_defaults,
    list_categories,
    name_sort_key,
    update_category,
)
from finance_tracker.errors import ConflictError, NotFoundError, ValidationError


def category_row(category_id, name, parent_id=None, category_type="EXPENSE"):
    return {
        "id": category_id,
        "user_id": 1,
        "parent_id": parent_id,
        "name": name,
        "type": category_type,
        "is_default": 0,
        "created_at": "2024-01-01T00:00:00.000Z",
        "updated_at": "2024-01-01T00:00:00.000Z",
    }


def walk(nodes, parent_id=None):
    for node in nodes:
        yield parent_id, node
        yield from walk(node["subcategories"], node["id"])


def category_count(db, user_id):
    return db.execute("SELECT COUNT(*) AS total FROM categories WHERE user_id = ?", (user_id,)).fetchone()["total"]


def test_build_tree_empty_input():
    assert build_tree([]) == []


def test_build_tree_nests_and_sorts_every_level():
    rows = [
        category_row(1, "Pets"),
        category_row(2, "Food"),
        category_row(3, "Pet Food", parent_id=1),
        category_row(4, "Cat Litter", parent_id=1),
        category_row(5, "Grooming", parent_id=1),
        category_row(6, "Brushes", parent_id=5),
        category_row(7, "Bonus", category_type="INCOME"),
    ]

    tree = build_tree(rows)

    assert [node["name"] for node in tree] == ["Bonus", "Food", "Pets"]
    pets = tree[2]
    assert [node["name"] for node in pets["subcategories"]] == ["Cat Litter", "Grooming", "Pet Food"]
    assert pets["subcategories"][1]["subcategories"][0]["name"] == "Brushes"

    visited = list(walk(tree))
    assert len(visited) == len(rows)
    for parent_id, node in visited:
        assert node["parentId"] == parent_id
        names = [child["name"] for child in node["subcategories"]]
        assert names == sorted(names, key=name_sort_key)


def test_build_tree_sorts_names_locale_aware():
    rows = [category_row(i, name) for i, name in enumerate(["banana", "Éclair", "Apple", "cherry", "apple"], start=1)]

    names = [node["name"] for node in build_tree(rows)]

    assert names == ["apple", "Apple", "banana", "cherry", "Éclair"]


def test_build_tree_leaves_out_rows_with_unknown_parent():
    rows = [category_row(1, "Food"), category_row(2, "Lost", parent_id=99)]

    tree = build_tree(rows)

    assert [node["name"] for node in tree] == ["Food"]


def test_ensure_defaults_is_idempotent(db, make_user):
    user_id = make_user()
    expected = sum(1 + len(item.subcategories) for item in DEFAULT_CATEGORIES)

    ensure_defaults(db, user_id)
    first = db.execute(
        "SELECT id, name, type, parent_id, is_default FROM categories WHERE user_id = ? ORDER BY id",
        (user_id,),
    ).fetchall()
    ensure_defaults(db, user_id)
    second = db.execute(
        "SELECT id, name, type, parent_id, is_default FROM categories WHERE user_id = ? ORDER BY id",
        (user_id,),
    ).fetchall()

    assert len(first) == expected
    assert [tuple(row) for row in first] == [tuple(row) for row in second]
    assert all(row["is_default"] == 1 for row in second)


def test_ensure_defaults_adopts_existing_user_category(db, make_user):
    user_id = make_user()
    db.execute(
        "INSERT INTO categories (user_id, parent_id, name, type, is_default) VALUES (?, NULL, 'Food', 'EXPENSE', 0)",
        (user_id,),
    )
    db.commit()
    food_id = db.execute("SELECT id FROM categories WHERE user_id = ? AND name = 'Food'", (user_id,)).fetchone()["id"]

    ensure_defaults(db, user_id)

    rows = db.execute(
        "SELECT id, is_default FROM categories WHERE user_id = ? AND name = 'Food' AND parent_id IS NULL",
        (user_id,),
    ).fetchall()
    assert len(rows) == 1
    assert rows[0]["id"] == food_id
    assert rows[0]["is_default"] == 1


def test_ensure_defaults_accepts_custom_table(db, make_user):
    user_id = make_user()
    taxonomy = (DefaultCategory("INCOME", "Freelance", ("Design", "Writing")),)

    ensure_defaults(db, user_id, defaults=taxonomy)

    tree = build_tree(db.execute("SELECT * FROM categories WHERE user_id = ?", (user_id,)).fetchall())
    assert len(tree) == 1
    assert tree[0]["name"] == "Freelance"
    assert [child["name"] for child in tree[0]["subcategories"]] == ["Design", "Writing"]
    assert all(child["type"] == "INCOME" for child in tree[0]["subcategories"])


def test_ensure_defaults_rolls_back_everything_on_failure(db, make_user):
    user_id = make_user()
    taxonomy = (
        DefaultCategory("INCOME", "Freelance", ("Design",)),
        DefaultCategory("SAVINGS", "Broken", ()),
    )

    with pytest.raises(sqlite3.IntegrityError):
        ensure_defaults(db, user_id, defaults=taxonomy)

    assert category_count(db, user_id) == 0


def test_ensure_defaults_concurrent_calls_converge(app, db, make_user):
    user_id = make_user()
    expected = sum(1 + len(item.subcategories) for item in DEFAULT_CATEGORIES)

    def provision(_):
        conn = app.connect_db()
        try:
            ensure_defaults(conn, user_id)
        finally:
            conn.close()

    with ThreadPoolExecutor(max_workers=8) as pool:
        list(pool.map(provision, range(8)))

    assert category_count(db, user_id) == expected
    duplicates = db.execute(
        """
        SELECT name, COUNT(*) AS copies FROM categories
        WHERE user_id = ? GROUP BY parent_id, type, name HAVING COUNT(*) > 1
        """,
        (user_id,),
    ).fetchall()
    assert duplicates == []


def test_list_categories_seeds_defaults_per_user(db, make_user):
    owner = make_user()
    other = make_user("other@example.com")

    tree = list_categories(db, owner)

    assert len(tree) == len(DEFAULT_CATEGORIES)
    pets = next(node for node in tree if node["name"] == "Pets")
    assert [child["name"] for child in pets["subcategories"]] == ["Cat Litter", "Grooming", "Pet Food"]
    assert category_count(db, other) == 0


def test_create_category_rules(db, make_user):
    owner = make_user()
    other = make_user("other@example.com")
    tree = list_categories(db, owner)
    salary = next(node for node in tree if node["name"] == "Salary")

    with pytest.raises(ValidationError):
        create_category(db, owner, "   ", category_type="EXPENSE")
    with pytest.raises(ValidationError):
        create_category(db, owner, "Rent")

    tips = create_category(db, owner, "  Tips  ", category_type="EXPENSE", parent_id=salary["id"])
    assert tips["name"] == "Tips"
    assert tips["type"] == "INCOME"
    assert tips["parentId"] == salary["id"]
    assert tips["isDefault"] is False
    assert tips["subcategories"] == []

    with pytest.raises(NotFoundError):
        create_category(db, other, "Stolen", parent_id=salary["id"])

    with pytest.raises(ConflictError):
        create_category(db, owner, "Tips", parent_id=salary["id"])

    # same name, different scope
    create_category(db, owner, "Tips", category_type="INCOME")
    create_category(db, owner, "Other", category_type="EXPENSE")


def test_update_category_rules(db, make_user):
    owner = make_user()
    tree = list_categories(db, owner)
    food = next(node for node in tree if node["name"] == "Food")
    custom = create_category(db, owner, "Rent", category_type="EXPENSE")

    with pytest.raises(ValidationError):
        update_category(db, owner, food["id"], name="Groceries")
    with pytest.raises(ValidationError):
        update_category(db, owner, custom["id"], name=" ")
    with pytest.raises(ConflictError):
        update_category(db, owner, custom["id"], name="Transport")
    with pytest.raises(NotFoundError):
        update_category(db, owner, 9999, name="Nope")

    renamed = update_category(db, owner, custom["id"], name="Housing")
    assert renamed["name"] == "Housing"


def test_delete_category_blocked_by_children_and_default_flag(db, make_user):
    owner = make_user()
    tree = list_categories(db, owner)
    food = next(node for node in tree if node["name"] == "Food")
    parent = create_category(db, owner, "Hobbies", category_type="EXPENSE")
    child = create_category(db, owner, "Climbing", parent_id=parent["id"])

    with pytest.raises(ValidationError):
        delete_category(db, owner, food["id"])
    with pytest.raises(ConflictError):
        delete_category(db, owner, parent["id"])

    delete_category(db, owner, child["id"])
    delete_category(db, owner, parent["id"])

    with pytest.raises(NotFoundError):
        delete_category(db, owner, parent["id"])
