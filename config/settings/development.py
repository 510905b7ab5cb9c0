from .base import *  # noqa: F403

DEBUG = True

ALLOWED_HOSTS = ["localhost", "127.0.0.1", "[::1]"]

# Development-specific logging: verbose output with colors
from config.logging import configure_structlog, get_logging_config  # noqa: E402
from config.startup_checks import validate_engine_config  # noqa: E402

configure_structlog(debug=True)
LOGGING = get_logging_config(debug=True, engine_level="DEBUG")

validate_engine_config(REBALANCER)  # noqa: F405
