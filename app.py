import logging

from flask import Blueprint, Flask, current_app, jsonify, request
from flask_login import LoginManager, login_user, login_required, logout_user, current_user
from werkzeug.security import generate_password_hash, check_password_hash

import analytics
from config import Config
from errors import BudgetError, ValidationError
from models import db, User
from store import Settings, StoreRegistry

logger = logging.getLogger(__name__)

bp = Blueprint("budget", __name__)


# ------------------------------
# Login manager setup
# ------------------------------
login_manager = LoginManager()

@login_manager.user_loader
def load_user(user_id):
    return db.session.get(User, int(user_id))


@login_manager.unauthorized_handler
def unauthorized():
    return jsonify({"error": "Not authenticated"}), 401


# ------------------------------
# Helpers
# ------------------------------

def _payload():
    # accept both a JSON body and plain form fields
    data = request.get_json(silent=True)
    if data is None:
        return request.form
    if not isinstance(data, dict):
        raise ValidationError("request body must be an object")
    return data


def _credentials(data):
    username = data.get('username') or ""
    password = data.get('password') or ""
    if not isinstance(username, str) or not isinstance(password, str):
        raise ValidationError("username and password must be text")
    return username.strip(), password


def _optional(data, key):
    value = data.get(key)
    if isinstance(value, str) and not value.strip():
        return None
    return value


def _current_user_id():
    if current_user.is_authenticated:
        return current_user.id
    return None


def _store(fresh=False):
    registry = current_app.extensions["budget_stores"]
    store = registry.for_user(current_user.id, _current_user_id)
    if fresh or not store.loaded:
        store.refresh()
    return store


@bp.app_errorhandler(BudgetError)
def handle_budget_error(error):
    if error.status_code >= 500:
        logger.error("request to %s failed: %s", request.path, error.__cause__)
    return jsonify({"error": error.message}), error.status_code


# ------------------------------
# Routes
# ------------------------------

@bp.route('/')
@login_required
def index():
    store = _store(fresh=True)
    return jsonify(store.as_dict())


@bp.route("/weeks", methods=["POST"])
@login_required
def add_week():
    data = _payload()
    store = _store()
    week = store.create_week(
        data.get("start_date"),
        data.get("end_date"),
        initial_balance=_optional(data, "initial_balance"),
        income=_optional(data, "income"),
    )
    return jsonify({"week": week.as_dict(), **store.as_dict()}), 201


@bp.route("/weeks/<int:week_id>/delete", methods=["POST"])
@login_required
def delete_week(week_id):
    store = _store()
    store.delete_week(week_id)
    return jsonify(store.as_dict())


@bp.route("/weeks/<int:week_id>/select", methods=["POST"])
@login_required
def select_week(week_id):
    store = _store()
    store.select_week(week_id)
    return jsonify(store.as_dict())


@bp.route("/weeks/<int:week_id>/income", methods=["POST"])
@login_required
def update_income(week_id):
    store = _store()
    store.update_week_income(week_id, _payload().get("income"))
    return jsonify(store.as_dict())


@bp.route("/weeks/<int:week_id>/expenses", methods=["POST"])
@login_required
def add_expense(week_id):
    data = _payload()
    store = _store()
    expense = store.add_expense(
        week_id,
        data.get("activity"),
        data.get("amount"),
        paid=_optional(data, "paid") or False,
    )
    return jsonify({"expense": expense.as_dict(), **store.as_dict()}), 201


@bp.route("/expenses/<int:expense_id>/update", methods=["POST"])
@login_required
def update_expense(expense_id):
    data = _payload()
    store = _store()
    expense = store.update_expense(
        expense_id,
        activity=_optional(data, "activity"),
        amount=_optional(data, "amount"),
        paid=_optional(data, "paid"),
    )
    return jsonify({"expense": expense.as_dict(), **store.as_dict()})


@bp.route("/expenses/<int:expense_id>/toggle-paid", methods=["POST"])
@login_required
def toggle_paid(expense_id):
    store = _store()
    expense = store.toggle_expense_paid(expense_id)
    return jsonify({"expense": expense.as_dict(), **store.as_dict()})


# Delete single expense
@bp.route("/expenses/<int:expense_id>/delete", methods=["POST"])
@login_required
def delete_expense(expense_id):
    store = _store()
    store.delete_expense(expense_id)
    return jsonify(store.as_dict())


# Reset (delete all user weeks and their expenses)
@bp.route("/reset", methods=["POST"])
@login_required
def reset_weeks():
    store = _store()
    deleted = store.reset_all()
    return jsonify({"deleted_weeks": deleted, **store.as_dict()})


@bp.route("/analytics")
@login_required
def analytics_report():
    store = _store(fresh=True)
    return jsonify(analytics.build_report(store.weeks))


@bp.route("/settings", methods=["GET", "POST"])
@login_required
def settings():
    store = _store()
    if request.method == "POST":
        data = _payload()
        changes = {
            key: data[key]
            for key in ("currency", "default_weekly_income")
            if key in data
        }
        store.update_settings(**changes)
    return jsonify(store.settings.as_dict())


@bp.route('/register', methods=['POST'])
def register():
    username, password = _credentials(_payload())
    if not username or not password:
        raise ValidationError("username and password are required")
    if User.query.filter_by(username=username).first():
        raise ValidationError("username is already taken")

    user = User(username=username, password=generate_password_hash(password))
    db.session.add(user)
    db.session.commit()
    return jsonify({"id": user.id, "username": user.username}), 201


@bp.route('/login', methods=['POST'])
def login():
    username, password = _credentials(_payload())
    user = User.query.filter_by(username=username).first()

    if user and check_password_hash(user.password, password):
        login_user(user)
        return jsonify({"id": user.id, "username": user.username})
    return jsonify({"error": "Invalid username or password"}), 401


@bp.route('/logout')
@login_required
def logout():
    # local state goes away with the session
    current_app.extensions["budget_stores"].discard(current_user.id)
    logout_user()
    return jsonify({"status": "logged out"})


# ------------------------------
# App setup
# ------------------------------

def create_app(test_config=None):
    app = Flask(__name__)
    app.config.from_object(Config)
    if test_config:
        app.config.update(test_config)

    logging.basicConfig(
        level=app.config["LOG_LEVEL"],
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    db.init_app(app)
    login_manager.init_app(app)

    app.extensions["budget_stores"] = StoreRegistry(
        lambda: Settings(
            currency=app.config["CURRENCY"],
            default_weekly_income=float(app.config["DEFAULT_WEEKLY_INCOME"]),
        ),
        idle_timeout=app.config["STORE_IDLE_SECONDS"],
    )
    app.register_blueprint(bp)

    with app.app_context():
        db.create_all()
    return app


# ------------------------------
# Run the app
# ------------------------------
if __name__ == "__main__":
    create_app().run(debug=True)
