import logging
import os
from functools import wraps

from flask import Flask, g, jsonify, request, session
from flask_cors import CORS
from werkzeug.exceptions import HTTPException

from .assets import (
    create_asset,
    create_asset_group,
    delete_asset,
    list_asset_groups,
    list_assets,
    update_asset,
)
from .budgets import create_budget, delete_budget, list_budgets, update_budget
from .categories import create_category, delete_category, list_categories, update_category
from .dashboard import DEFAULT_MAX_WORKERS, RECENT_TRANSACTIONS_LIMIT, overview
from .db import connect_db, parse_database_config
from .db_migrations import apply_migrations, get_db_health
from .errors import AppError, DatabaseInitError, UnauthorizedError
from .sample_data import seed_demo_data
from .transactions import create_transaction, delete_transaction, list_transactions, update_transaction
from .users import authenticate, register_user, serialize_user, update_currency
from .validation import (
    validate_asset,
    validate_asset_group,
    validate_budget,
    validate_category_create,
    validate_category_update,
    validate_currency,
    validate_dashboard_query,
    validate_login,
    validate_register,
    validate_transaction,
)

API_PREFIX = "/api/v1"


def create_app(test_config=None):
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_mapping(
        SECRET_KEY=os.environ.get("SECRET_KEY", "dev"),
        DATABASE=os.path.join(app.instance_path, "finance_tracker.sqlite"),
        CLIENT_URL=os.environ.get("CLIENT_URL", "http://localhost:3000"),
        DASHBOARD_MAX_WORKERS=int(os.environ.get("DASHBOARD_MAX_WORKERS", DEFAULT_MAX_WORKERS)),
        RECENT_TRANSACTIONS_LIMIT=RECENT_TRANSACTIONS_LIMIT,
        LOG_LEVEL=os.environ.get("LOG_LEVEL", "INFO"),
    )

    if test_config is not None:
        app.config.update(test_config)

    if not app.testing and not logging.getLogger().handlers:
        logging.basicConfig(level=app.config["LOG_LEVEL"])

    os.makedirs(app.instance_path, exist_ok=True)
    app.config.setdefault("DB_INIT_ERROR", None)

    CORS(app, resources={rf"{API_PREFIX}/*": {"origins": app.config["CLIENT_URL"]}}, supports_credentials=True)

    def db_config():
        return parse_database_config(app.config["DATABASE"])

    def connect():
        return connect_db(db_config())

    @app.teardown_appcontext
    def close_db(_=None):
        db = g.pop("db", None)
        if db is not None:
            db.close()

    def get_db():
        if "db" not in g:
            try:
                g.db = connect()
            except Exception as exc:
                message = f"Unable to open database {db_config()['database_name']}: {exc}"
                app.logger.error(message)
                app.config["DB_INIT_ERROR"] = message
                raise DatabaseInitError(message) from exc
        return g.db

    def init_db():
        try:
            apply_migrations(db_config())
            app.config["DB_INIT_ERROR"] = None
        except Exception as exc:
            message = f"Failed to initialize database {db_config()['database_name']}: {exc}"
            app.logger.error(message)
            app.config["DB_INIT_ERROR"] = message
            raise DatabaseInitError(message) from exc

    @app.cli.command("init-db")
    def init_db_command():
        init_db()
        print("Initialized the database.")

    @app.cli.command("seed-demo")
    def seed_demo_command():
        init_db()
        email = seed_demo_data(get_db())
        print(f"Sample data generated. Login with {email} / password123")

    @app.errorhandler(AppError)
    def handle_app_error(exc):
        return jsonify(exc.to_dict()), exc.status_code

    @app.errorhandler(HTTPException)
    def handle_http_error(exc):
        return jsonify({"message": exc.description, "kind": "http"}), exc.code

    @app.errorhandler(Exception)
    def handle_unexpected_error(exc):
        app.logger.exception("Unhandled error on %s %s", request.method, request.path)
        return jsonify({"message": "Unexpected error occurred", "kind": "internal"}), 500

    @app.get("/health")
    def health():
        return jsonify({"status": "ok"})

    @app.get("/health/db")
    def db_health():
        try:
            return jsonify(get_db_health(db_config()))
        except Exception as exc:
            app.logger.warning("DB health check failed: %s", exc)
            return jsonify({
                "ok": False,
                "schema_version": 0,
                "missing_tables": [],
                "missing_columns": {},
                "missing_indexes": [],
                "error": str(exc),
            }), 500

    @app.before_request
    def load_logged_in_user():
        if request.path.startswith("/health"):
            return None
        if app.config.get("DB_INIT_ERROR"):
            message = app.config.get("DB_INIT_ERROR") or "Database initialization failed."
            return jsonify({"message": message, "kind": "internal"}), 500

        user_id = session.get("user_id")
        if user_id is None:
            g.user = None
        else:
            g.user = get_db().execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        return None

    def login_required(view):
        @wraps(view)
        def wrapped_view(**kwargs):
            if g.user is None:
                raise UnauthorizedError("Authentication required")
            return view(**kwargs)

        return wrapped_view

    def body():
        return request.get_json(silent=True)

    def data(payload, status=200):
        return jsonify({"data": payload}), status

    # ---------------------- auth & user settings ----------------------

    @app.post(f"{API_PREFIX}/auth/register")
    def register():
        values = validate_register(body())
        user = register_user(get_db(), values["email"], values["password"], values["display_name"])
        session.clear()
        session["user_id"] = user["id"]
        app.logger.info("User %s registered", user["id"])
        return jsonify({"user": serialize_user(user)}), 201

    @app.post(f"{API_PREFIX}/auth/login")
    def login():
        values = validate_login(body())
        try:
            user = authenticate(get_db(), values["email"], values["password"])
        except UnauthorizedError:
            app.logger.warning("Failed login for %s", values["email"])
            raise
        session.clear()
        session["user_id"] = user["id"]
        return jsonify({"user": serialize_user(user)})

    @app.post(f"{API_PREFIX}/auth/logout")
    def logout():
        session.clear()
        return "", 204

    @app.get(f"{API_PREFIX}/auth/me")
    @login_required
    def me():
        return jsonify({"user": serialize_user(g.user)})

    @app.put(f"{API_PREFIX}/users/currency")
    @login_required
    def change_currency():
        values = validate_currency(body())
        user = update_currency(get_db(), g.user["id"], values["currency"])
        app.logger.info("User %s currency set to %s", g.user["id"], values["currency"])
        return jsonify({"user": serialize_user(user)})

    # ---------------------- categories ----------------------

    @app.get(f"{API_PREFIX}/categories")
    @login_required
    def categories():
        return data(list_categories(get_db(), g.user["id"]))

    @app.post(f"{API_PREFIX}/categories")
    @login_required
    def add_category():
        values = validate_category_create(body())
        category = create_category(
            get_db(),
            g.user["id"],
            values["name"],
            category_type=values["type"],
            parent_id=values["parent_id"],
        )
        return data(category, 201)

    @app.patch(f"{API_PREFIX}/categories/<int:category_id>")
    @login_required
    def edit_category(category_id):
        values = validate_category_update(body())
        return data(update_category(get_db(), g.user["id"], category_id, name=values.get("name")))

    @app.delete(f"{API_PREFIX}/categories/<int:category_id>")
    @login_required
    def remove_category(category_id):
        delete_category(get_db(), g.user["id"], category_id)
        return "", 204

    # ---------------------- transactions ----------------------

    @app.get(f"{API_PREFIX}/transactions")
    @login_required
    def transactions():
        return data(list_transactions(get_db(), g.user["id"]))

    @app.post(f"{API_PREFIX}/transactions")
    @login_required
    def add_transaction():
        values = validate_transaction(body())
        return data(create_transaction(get_db(), g.user["id"], **values), 201)

    @app.put(f"{API_PREFIX}/transactions/<int:transaction_id>")
    @login_required
    def edit_transaction(transaction_id):
        values = validate_transaction(body(), partial=True)
        return data(update_transaction(get_db(), g.user["id"], transaction_id, **values))

    @app.delete(f"{API_PREFIX}/transactions/<int:transaction_id>")
    @login_required
    def remove_transaction(transaction_id):
        delete_transaction(get_db(), g.user["id"], transaction_id)
        return "", 204

    # ---------------------- budgets ----------------------

    @app.get(f"{API_PREFIX}/budgets")
    @login_required
    def budgets():
        return data(list_budgets(get_db(), g.user["id"]))

    @app.post(f"{API_PREFIX}/budgets")
    @login_required
    def add_budget():
        values = validate_budget(body())
        return data(create_budget(get_db(), g.user["id"], **values), 201)

    @app.put(f"{API_PREFIX}/budgets/<int:budget_id>")
    @login_required
    def edit_budget(budget_id):
        values = validate_budget(body(), partial=True)
        return data(update_budget(get_db(), g.user["id"], budget_id, **values))

    @app.delete(f"{API_PREFIX}/budgets/<int:budget_id>")
    @login_required
    def remove_budget(budget_id):
        delete_budget(get_db(), g.user["id"], budget_id)
        return "", 204

    # ---------------------- assets ----------------------

    @app.get(f"{API_PREFIX}/assets/groups")
    @login_required
    def asset_groups():
        return data(list_asset_groups(get_db(), g.user["id"]))

    @app.post(f"{API_PREFIX}/assets/groups")
    @login_required
    def add_asset_group():
        values = validate_asset_group(body())
        return data(create_asset_group(get_db(), g.user["id"], values["name"]), 201)

    @app.get(f"{API_PREFIX}/assets")
    @login_required
    def assets():
        return data(list_assets(get_db(), g.user["id"]))

    @app.post(f"{API_PREFIX}/assets")
    @login_required
    def add_asset():
        values = validate_asset(body())
        return data(create_asset(get_db(), g.user["id"], **values), 201)

    @app.put(f"{API_PREFIX}/assets/<int:asset_id>")
    @login_required
    def edit_asset(asset_id):
        values = validate_asset(body(), partial=True)
        return data(update_asset(get_db(), g.user["id"], asset_id, **values))

    @app.delete(f"{API_PREFIX}/assets/<int:asset_id>")
    @login_required
    def remove_asset(asset_id):
        delete_asset(get_db(), g.user["id"], asset_id)
        return "", 204

    # ---------------------- dashboard ----------------------

    @app.get(f"{API_PREFIX}/dashboard")
    @login_required
    def dashboard():
        start, end = validate_dashboard_query(request.args)
        snapshot = overview(
            connect,
            g.user["id"],
            start=start,
            end=end,
            max_workers=app.config["DASHBOARD_MAX_WORKERS"],
            recent_limit=app.config["RECENT_TRANSACTIONS_LIMIT"],
        )
        return data(snapshot)

    with app.app_context():
        try:
            init_db()
        except DatabaseInitError:
            pass

    app.get_db = get_db
    app.init_db = init_db
    app.connect_db = connect
    return app
