"""
Application configuration.

Most values can be overridden from the environment; the defaults are meant
for a local SQLite setup. Set SECRET_KEY and DATABASE_URL in production.
"""

import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent


class Config:
    """Base configuration shared by all environments."""

    # IMPORTANT: change this in production
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-change-me-please")

    # SQLite file next to this module unless DATABASE_URL is set
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        f"sqlite:///{BASE_DIR / 'sitestock.db'}"
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # CSRF protection for forms
    WTF_CSRF_ENABLED = True

    # Bills / issue slips are stored below this folder
    UPLOAD_FOLDER = os.environ.get("UPLOAD_FOLDER", str(BASE_DIR / "uploads"))
    MAX_UPLOAD_BYTES = 10 * 1024 * 1024
    # Request limit is slightly above the file limit so oversize files get a friendly message
    MAX_CONTENT_LENGTH = 12 * 1024 * 1024
    SIGNED_URL_MAX_AGE = int(os.environ.get("SIGNED_URL_MAX_AGE", "3600"))

    # Period used by stock summaries when the user has not picked one
    DEFAULT_PERIOD = os.environ.get("DEFAULT_PERIOD", "last30days")

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # App UI name (used in templates)
    APP_NAME = "Site Inventory"


class TestingConfig(Config):
    """Configuration used by the test-suite (in-memory DB, no CSRF)."""

    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    WTF_CSRF_ENABLED = False
    LOG_LEVEL = "WARNING"
