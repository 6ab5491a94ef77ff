"""Configuration loading: YAML file + environment-variable overrides."""

from __future__ import annotations

import logging
import os
import secrets
from decimal import Decimal, InvalidOperation

import yaml

from config_models import AppConfig, EmailConfig

logger = logging.getLogger(__name__)

VALID_VAT_MODES = ("per_line", "flat")


def _env_flag(name: str, fallback) -> bool:
    return os.environ.get(name, str(fallback)).lower() in ("true", "1", "yes")


def load_config():
    """Load configuration from *config.yaml* with env-var overrides.

    Environment variables take precedence over config.yaml values.
    Returns (AppConfig, EmailConfig, database_uri).
    """
    config_path = os.environ.get("CONFIG_PATH", "config.yaml")
    raw: dict = {}
    if os.path.exists(config_path):
        with open(config_path, "r", encoding="utf-8") as handle:
            raw = yaml.safe_load(handle) or {}

    app_cfg = raw.get("app", {})
    billing_cfg = raw.get("billing", {})
    email_cfg = raw.get("email", {})
    db_cfg = raw.get("database", {})

    secret_key = os.environ.get("APP_SECRET_KEY", app_cfg.get("secret_key", ""))
    if not secret_key or secret_key == "change-me":
        secret_key = secrets.token_hex(32)
        logger.warning(
            "Using auto-generated secret key. Set APP_SECRET_KEY env var "
            "or app.secret_key in config.yaml for stable sessions across restarts."
        )

    raw_rate = os.environ.get("DEFAULT_VAT_RATE", billing_cfg.get("default_vat_rate", "25"))
    try:
        default_vat_rate = Decimal(str(raw_rate))
    except InvalidOperation:
        logger.warning("Invalid default VAT rate %r, falling back to 25", raw_rate)
        default_vat_rate = Decimal("25")

    vat_mode = os.environ.get("VAT_MODE", billing_cfg.get("vat_mode", "per_line"))
    if vat_mode not in VALID_VAT_MODES:
        logger.warning("Unknown VAT mode %r, falling back to per_line", vat_mode)
        vat_mode = "per_line"

    return (
        AppConfig(
            name=app_cfg.get("name", "IRiS"),
            secret_key=secret_key,
            currency=app_cfg.get("currency", "NOK"),
            default_vat_rate=default_vat_rate,
            default_payment_terms=int(
                os.environ.get(
                    "DEFAULT_PAYMENT_TERMS",
                    billing_cfg.get("default_payment_terms", 14),
                )
            ),
            vat_mode=vat_mode,
        ),
        EmailConfig(
            enabled=_env_flag("EMAIL_ENABLED", email_cfg.get("enabled", False)),
            smtp_host=os.environ.get("SMTP_HOST", email_cfg.get("smtp_host", "")),
            smtp_port=int(os.environ.get("SMTP_PORT", email_cfg.get("smtp_port", 587))),
            smtp_user=os.environ.get("SMTP_USER", email_cfg.get("smtp_user", "")),
            smtp_password=os.environ.get("SMTP_PASSWORD", email_cfg.get("smtp_password", "")),
            sender=os.environ.get("EMAIL_SENDER", email_cfg.get("sender", "")),
        ),
        os.environ.get("DATABASE_URI", db_cfg.get("uri", "sqlite:///iris.db")),
    )


def enable_sqlite_fks(dbapi_conn, _connection_record):
    """Enable foreign key enforcement for SQLite connections."""
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()
