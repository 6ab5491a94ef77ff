"""Flask extensions: single instances bound to the app in ``create_app``."""

from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_sqlalchemy import SQLAlchemy
from flask_wtf.csrf import CSRFProtect

db = SQLAlchemy()
csrf = CSRFProtect()
# Login carries its own stricter limit (routes/auth.py)
limiter = Limiter(
    get_remote_address,
    storage_uri="memory://",
    default_limits=["600 per minute"],
    headers_enabled=True,
)
