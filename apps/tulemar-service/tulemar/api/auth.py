"""
Authentication helpers and identity resolution.

Parses oauth2-proxy headers, normalizes emails, and upserts users. Roles
come from ``user_roles`` plus environment allowlists: ``ADMIN_EMAILS`` and
``STAFF_EMAILS_<ROLE>`` (e.g. ``STAFF_EMAILS_SHOPPER``). Every user holds
the ``client`` role.
"""
import os
from typing import Iterable, List, Optional, Set, Tuple
from sqlalchemy.orm import Session

from tulemar.db import models
from tulemar.db.repositories import users as users_repo
from tulemar.utils.roles import ROLE_ADMIN, ROLE_CLIENT, STAFF_ROLES, ROLE_STORE_MANAGER


def _normalize_email(email: Optional[str]) -> Optional[str]:
    if not email:
        return None
    return email.strip().lower()


def _normalize_list_env(var_name: str) -> Set[str]:
    raw = os.getenv(var_name, "")
    values = set()
    for entry in raw.split(","):
        cleaned = entry.strip().strip('"').strip("'")
        if cleaned:
            values.add(cleaned.lower())
    return values


def _admin_emails() -> Set[str]:
    return _normalize_list_env("ADMIN_EMAILS")


def roles_from_env(email: str) -> List[str]:
    """Roles granted to ``email`` by environment allowlists."""
    roles = [ROLE_CLIENT]
    if email in _admin_emails():
        roles.append(ROLE_ADMIN)
    for role in sorted(STAFF_ROLES | {ROLE_STORE_MANAGER}):
        if email in _normalize_list_env(f"STAFF_EMAILS_{role.upper()}"):
            roles.append(role)
    return roles


def resolve_identity_from_headers(
    x_auth_request_user: Optional[str],
    x_auth_request_email: Optional[str],
    x_forwarded_user: Optional[str],
    x_forwarded_email: Optional[str],
) -> Tuple[Optional[str], Optional[str]]:
    user = x_auth_request_user or x_forwarded_user
    email = _normalize_email(x_auth_request_email or x_forwarded_email)
    return user, email


def get_or_create_user(
    db: Session,
    email: str,
    display_name: Optional[str] = None,
    extra_roles: Iterable[str] = (),
) -> models.User:
    """Upsert the user and grant any roles the allowlists now give them.

    Roles are only ever added here; revocation is an explicit admin action.
    """
    user = users_repo.get_user_by_email(db, email)
    if not user:
        user = models.User(
            email=email,
            display_name=display_name or email.split("@")[0],
            auth_provider="oauth2-proxy",
        )
        db.add(user)
        db.flush()

    granted = users_repo.add_roles(db, user, [*roles_from_env(email), *extra_roles], commit=False)
    if granted:
        db.commit()
        db.refresh(user)
    return user
