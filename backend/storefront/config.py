# backend/storefront/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/storefront.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///storefront.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Unpaid orders are held this long before the expiry sweep cancels them
    ORDER_PAYMENT_HOLD_MINUTES = int(os.environ.get("ORDER_PAYMENT_HOLD_MINUTES", "2"))
    # shipped_at is stamped this far after a payment proof is accepted
    ORDER_SHIPPING_DELAY_MINUTES = int(os.environ.get("ORDER_SHIPPING_DELAY_MINUTES", "2"))

    PAYMENT_PROOF_UPLOAD_FOLDER = os.environ.get(
        "PAYMENT_PROOF_UPLOAD_FOLDER",
        os.path.join(os.getcwd(), "public", "assets", "payment"),
    )
    PAYMENT_PROOF_URL_PREFIX = "/assets/payment"
    PAYMENT_PROOF_ALLOWED_EXTENSIONS = {"jpg", "jpeg", "png", "gif"}

    # Flask rejects request bodies above this size (payment proof uploads)
    MAX_CONTENT_LENGTH = 1 * 1024 * 1024

    STOCK_RETRY_ATTEMPTS = int(os.environ.get("STOCK_RETRY_ATTEMPTS", "3"))
