"""
Django settings for the rebalancer project.

Base settings shared by all environments.
"""

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

# config/settings/base.py is 3 levels below the project root
BASE_DIR = Path(__file__).resolve().parent.parent.parent

# SECURITY WARNING: keep the secret key used in production secret!
SECRET_KEY = os.getenv("SECRET_KEY") or "django-insecure-placeholder-key-for-tests-and-local-dev"

# SECURITY WARNING: don't run with debug turned on in production!
DEBUG = os.getenv("DEBUG", "False") == "True"

# Configure logging early (before Django uses it)
from config.logging import configure_structlog, get_logging_config  # noqa: E402

configure_structlog(debug=DEBUG)

ALLOWED_HOSTS = [h.strip() for h in os.getenv("ALLOWED_HOSTS", "").split(",") if h.strip()]


# Application definition

INSTALLED_APPS = [
    "django.contrib.contenttypes",
    "rebalancer",
]


# ============================================================================
# DATABASE CONFIGURATION
# ============================================================================

DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.sqlite3",
        "NAME": os.getenv("DB_NAME") or BASE_DIR / "db.sqlite3",
    }
}


# Internationalization

LANGUAGE_CODE = "en-us"

TIME_ZONE = "UTC"

USE_I18N = True

USE_TZ = True

# Default primary key field type
DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"


# ============================================================================
# REBALANCING ENGINE
# ============================================================================
# Read through rebalancer.conf.EngineSettings.from_settings().
# Environment variables override the defaults below.


def _env_optional_decimal(name: str, default: str) -> str | None:
    """Blank or "none" disables a threshold."""
    value = os.getenv(name, default).strip()
    return None if value.lower() in ("", "none", "off") else value


REBALANCER = {
    "MIN_TRADE_VALUE": os.getenv("REBALANCER_MIN_TRADE_VALUE", "50.00"),
    "HARVEST_LOSS_PERCENT": _env_optional_decimal("REBALANCER_HARVEST_LOSS_PERCENT", "5"),
    "HARVEST_LOSS_DOLLARS": _env_optional_decimal("REBALANCER_HARVEST_LOSS_DOLLARS", "2500"),
    "WASH_SALE_WINDOW_DAYS": int(os.getenv("REBALANCER_WASH_SALE_WINDOW_DAYS", "31")),
    "WASH_SALE_SCOPE": os.getenv("REBALANCER_WASH_SALE_SCOPE", "household"),
    "LONG_TERM_HOLDING_DAYS": int(os.getenv("REBALANCER_LONG_TERM_HOLDING_DAYS", "366")),
    "MODEL_WEIGHT_TOLERANCE_BP": int(os.getenv("REBALANCER_MODEL_WEIGHT_TOLERANCE_BP", "1")),
    "PROTECT_LEGACY_GAINS": os.getenv("REBALANCER_PROTECT_LEGACY_GAINS", "False") == "True",
}


# Logging Configuration
# Using structlog for structured logging with Django's logging system
LOGGING = get_logging_config(debug=DEBUG)
