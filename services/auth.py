"""Authentication and authorization services."""

from __future__ import annotations

import logging
from functools import wraps
from typing import Optional

from flask import g, session
from werkzeug.security import check_password_hash, generate_password_hash

from errors import AuthError, PermissionDeniedError, ValidationError
from extensions import db
from models import ROLE_PERMISSIONS, VALID_ROLES, Company, User

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 8


def get_current_user() -> Optional[User]:
    """Return the currently logged-in user from ``flask.g``."""
    return getattr(g, "current_user", None)


def user_permissions(user: Optional[User]) -> set[str]:
    if not user:
        return set()
    return ROLE_PERMISSIONS.get(user.role, set())


def has_permission(user: Optional[User], permission: str) -> bool:
    permissions = user_permissions(user)
    return permission in permissions or "manage_all" in permissions


def login_required(f):
    """Decorator that rejects anonymous requests with ``AuthError``."""

    @wraps(f)
    def decorated(*args, **kwargs):
        if not get_current_user():
            raise AuthError("Login required.")
        return f(*args, **kwargs)

    return decorated


def role_required(permission: str):
    """Decorator that checks user has *permission* (or ``manage_all``)."""

    def decorator(f):
        @wraps(f)
        def decorated(*args, **kwargs):
            user = get_current_user()
            if not user:
                raise AuthError("Login required.")
            if not has_permission(user, permission):
                raise PermissionDeniedError("You do not have permission for this action.")
            return f(*args, **kwargs)

        return decorated

    return decorator


def authenticate(email: str, password: str) -> User:
    """Return the active user matching *email*/*password* or raise ``AuthError``."""
    user = User.query.filter_by(email=(email or "").strip().lower()).first()
    if (
        not user
        or not user.is_active
        or not check_password_hash(user.password_hash, password or "")
    ):
        logger.warning("Failed login for %r", email)
        raise AuthError("Incorrect email or password.")
    if user.company and not user.company.is_active:
        raise AuthError("The company account is deactivated.")
    session.clear()
    session["user_id"] = user.id
    session.permanent = True
    logger.info("User %s logged in", user.id)
    return user


def create_user(
    company: Company,
    email: str,
    name: str,
    password: str,
    role: str = "photographer",
    phone: Optional[str] = None,
) -> User:
    """Create a user in *company*.  Does not commit."""
    if role not in VALID_ROLES:
        raise ValidationError(f"Unknown role '{role}'.")
    if len(password or "") < MIN_PASSWORD_LENGTH:
        raise ValidationError(
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters."
        )
    email = (email or "").strip().lower()
    if not email:
        raise ValidationError("Email is required.")
    if User.query.filter_by(email=email).first():
        raise ValidationError(f"A user with email {email} already exists.")
    user = User(
        company_id=company.id,
        email=email,
        name=name,
        phone=phone,
        password_hash=generate_password_hash(password),
        role=role,
    )
    db.session.add(user)
    return user
