from .base import *  # noqa: F403

DEBUG = False

# Use in-memory SQLite for speed
DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.sqlite3",
        "NAME": ":memory:",
    }
}

# Tests use the engine defaults regardless of the local environment
REBALANCER = {
    "MIN_TRADE_VALUE": "50.00",
    "HARVEST_LOSS_PERCENT": "5",
    "HARVEST_LOSS_DOLLARS": "2500",
    "WASH_SALE_WINDOW_DAYS": 31,
    "WASH_SALE_SCOPE": "household",
    "LONG_TERM_HOLDING_DAYS": 366,
    "MODEL_WEIGHT_TOLERANCE_BP": 1,
    "PROTECT_LEGACY_GAINS": False,
}

# Silence engine logging during tests to keep output clean(er)
LOGGING = {
    "version": 1,
    "disable_existing_loggers": True,
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
        },
    },
    "loggers": {
        "rebalancer": {
            "handlers": ["console"],
            "level": "CRITICAL",
        },
    },
}
