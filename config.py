"""Base configuration for the weekly budget app."""

import os

BASE_DIR = os.path.abspath(os.path.dirname(__file__))


class Config:
    # Use an environment-provided secret; fall back to a dev-only value.
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-insecure-change-me")
    SQLALCHEMY_DATABASE_URI = os.getenv(
        "DATABASE_URL", f'sqlite:///{os.path.join(BASE_DIR, "weekly_budget.db")}'
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    DEFAULT_WEEKLY_INCOME = float(os.getenv("DEFAULT_WEEKLY_INCOME", "500"))
    CURRENCY = os.getenv("CURRENCY", "USD")
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
    # in-memory stores of users not seen for this long are dropped
    STORE_IDLE_SECONDS = float(os.getenv("STORE_IDLE_SECONDS", "3600"))
