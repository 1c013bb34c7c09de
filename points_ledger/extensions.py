"""
Extension singletons shared by the ledger.

Bound to the app in create_app() via init_app(). The limiter reads its
backend from RATELIMIT_STORAGE_URI so several workers can share counters.
"""

from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address

db = SQLAlchemy()
migrate = Migrate()
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],  # per-route only (checkout)
)
