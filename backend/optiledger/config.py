# backend/optiledger/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored next to the process unless DATABASE_URL points elsewhere
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///optiledger.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    PAGINATION_DEFAULT_LIMIT = int(os.environ.get("PAGINATION_DEFAULT_LIMIT", "50"))

    # Boleto gateway (cooperative bank API)
    # Either a static BOLETO_ACCESS_TOKEN or client id/secret for OAuth.
    BOLETO_API_BASE_URL = os.environ.get("BOLETO_API_BASE_URL", "")
    BOLETO_CLIENT_ID = os.environ.get("BOLETO_CLIENT_ID", "")
    BOLETO_CLIENT_SECRET = os.environ.get("BOLETO_CLIENT_SECRET", "")
    BOLETO_ACCESS_TOKEN = os.environ.get("BOLETO_ACCESS_TOKEN", "")
    BOLETO_COOPERATIVE_CODE = os.environ.get("BOLETO_COOPERATIVE_CODE", "")
    BOLETO_POST_CODE = os.environ.get("BOLETO_POST_CODE", "")
    BOLETO_ENVIRONMENT = os.environ.get("BOLETO_ENVIRONMENT", "sandbox")  # sandbox | production
    BOLETO_TIMEOUT_SECONDS = float(os.environ.get("BOLETO_TIMEOUT_SECONDS", "30"))
