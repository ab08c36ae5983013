"""
SQLAlchemy models and database configuration for the token guardian.
"""

from .db_base import TimestampMixin, ensure_utc, utc_now
from .db_config import (
    Base,
    DatabaseConfig,
    DatabaseManager,
    close_db,
    get_db_manager,
    get_development_config,
    get_production_config,
    import_all_models,
    init_db,
    initialize_db,
    set_db_manager,
)
from .db_token_models import GuardianToken

__all__ = [
    # Base definitions
    "Base",
    "TimestampMixin",
    "ensure_utc",
    "utc_now",
    # Configuration
    "DatabaseConfig",
    "DatabaseManager",
    "import_all_models",
    "init_db",
    "initialize_db",
    "get_db_manager",
    "set_db_manager",
    "close_db",
    "get_production_config",
    "get_development_config",
    # Models
    "GuardianToken",
]
