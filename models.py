from datetime import datetime, timezone

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()


def _utcnow():
    return datetime.now(timezone.utc)


class Week(db.Model):
    __tablename__ = "weeks"
    __table_args__ = (
        db.CheckConstraint("start_date <= end_date", name="ck_weeks_date_range"),
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    start_date = db.Column(db.Date, nullable=False)
    end_date = db.Column(db.Date, nullable=False)
    initial_balance = db.Column(db.Float, nullable=False, default=0.0)
    income = db.Column(db.Float, nullable=False, default=0.0)
    created_at = db.Column(db.DateTime, nullable=False, default=_utcnow)

    # deleting a week takes its expenses with it
    expenses = db.relationship(
        'Expense',
        backref='week',
        lazy=True,
        cascade="all, delete-orphan",
        order_by="Expense.id",
    )


class Expense(db.Model):
    __tablename__ = "expenses"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    week_id = db.Column(
        db.Integer, db.ForeignKey('weeks.id', ondelete="CASCADE"), nullable=False, index=True
    )
    activity = db.Column(db.String(200), nullable=False)
    amount = db.Column(db.Float, nullable=False)
    paid = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime, nullable=False, default=_utcnow)


from flask_login import UserMixin

class User(db.Model, UserMixin):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(80), unique=True, nullable=False)
    password = db.Column(db.String(200), nullable=False)

    weeks = db.relationship('Week', backref='user', lazy=True)
