# backend/washbay/config.py
from __future__ import annotations
import os


def _split_origins(value: str) -> set[str]:
    return {origin.strip() for origin in value.split(",") if origin.strip()}


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/washbay.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///washbay.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Session lifetime for bearer tokens
    SESSION_TTL_HOURS = int(os.environ.get("SESSION_TTL_HOURS", "24"))
    SESSION_IDLE_HOURS = int(os.environ.get("SESSION_IDLE_HOURS", "2"))

    # Invoice numbers look like INV-2026-0001
    INVOICE_PREFIX = os.environ.get("INVOICE_PREFIX", "INV")

    CORS_ORIGINS = _split_origins(
        os.environ.get(
            "CORS_ORIGINS",
            "http://localhost:5173,http://127.0.0.1:5173,http://localhost:4173,http://127.0.0.1:4173",
        )
    )
