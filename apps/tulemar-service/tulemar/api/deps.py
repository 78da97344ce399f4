"""
API dependency helpers.

Provides the dependency-resolved user context, role guards and the
workflow ``Actor`` for routes.
"""
import logging
from typing import Any, Callable, Dict, List, Optional, Tuple

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from tulemar.api.auth import resolve_identity_from_headers, get_or_create_user
from tulemar.db import models
from tulemar.db.database import get_db
from tulemar.services.notification_orchestrator import SYSTEM_RECIPIENT
from tulemar.services.order_workflow_service import Actor
from tulemar.services.workflow_errors import WorkflowError
from tulemar.utils.roles import has_any_role, is_admin_role
from tulemar.utils.runtime import dev_mode_active, dev_identity

logger = logging.getLogger(__name__)

# Contract:
# Returns (sqlalchemy User model, current_user_context_dict)
# Raises 401 if identity cannot be resolved.


def _build_context(user: models.User) -> Dict[str, Any]:
    roles = list(user.role_names)
    return {
        "id": user.id,
        "email": user.email,
        "display_name": user.display_name,
        "roles": roles,
        "is_admin": is_admin_role(roles),
    }


def get_current_user_context(
    db: Session = Depends(get_db),
    x_auth_request_user: Optional[str] = Header(default=None),
    x_auth_request_email: Optional[str] = Header(default=None),
    x_forwarded_user: Optional[str] = Header(default=None),
    x_forwarded_email: Optional[str] = Header(default=None),
) -> Tuple[models.User, Dict[str, Any]]:
    try:
        is_dev_mode = dev_mode_active()
    except RuntimeError as exc:
        logger.error("DEV_MODE misconfiguration detected: %s", exc)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="DEV_MODE misconfigured")

    if is_dev_mode:
        identity = dev_identity()
        user = get_or_create_user(db, email=identity.email, display_name=identity.display_name, extra_roles=identity.roles)
    else:
        name, email = resolve_identity_from_headers(
            x_auth_request_user=x_auth_request_user,
            x_auth_request_email=x_auth_request_email,
            x_forwarded_user=x_forwarded_user,
            x_forwarded_email=x_forwarded_email,
        )
        if not email:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication required")
        user = get_or_create_user(db, email=email, display_name=name)
    return user, _build_context(user)


def get_current_user_context_or_guest(
    db: Session = Depends(get_db),
    x_auth_request_user: Optional[str] = Header(default=None),
    x_auth_request_email: Optional[str] = Header(default=None),
    x_forwarded_user: Optional[str] = Header(default=None),
    x_forwarded_email: Optional[str] = Header(default=None),
):
    """Return the user context if authenticated; otherwise (guest) return (None, None).

    Used by read endpoints that allow guest access, such as the catalog.
    """
    try:
        return get_current_user_context(
            db=db,
            x_auth_request_user=x_auth_request_user,
            x_auth_request_email=x_auth_request_email,
            x_forwarded_user=x_forwarded_user,
            x_forwarded_email=x_forwarded_email,
        )
    except HTTPException as e:
        if e.status_code != status.HTTP_401_UNAUTHORIZED:
            raise
        return None, None


def require_roles(*roles: str) -> Callable:
    """Dependency factory: the caller must hold one of ``roles`` or be an admin."""

    def _dependency(user_context=Depends(get_current_user_context)):
        _user, current_user = user_context
        held = current_user.get("roles") or []
        if not (current_user.get("is_admin") or has_any_role(held, roles)):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient role")
        return user_context

    return _dependency


def require_admin(user_context=Depends(get_current_user_context)):
    _user, current_user = user_context
    if not current_user.get("is_admin"):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin role required")
    return user_context


def actor_from_context(current_user: Dict[str, Any]) -> Actor:
    return Actor(
        id=current_user.get("id"),
        roles=frozenset(current_user.get("roles") or ()),
        email=current_user.get("email"),
    )


def recipient_identifiers(current_user: Dict[str, Any]) -> List[str]:
    """Identifiers under which notifications for this user are stored."""
    identifiers = [current_user["email"], str(current_user["id"])]
    if current_user.get("is_admin"):
        identifiers.append(SYSTEM_RECIPIENT)
    return identifiers


def workflow_http_error(exc: WorkflowError) -> HTTPException:
    """Translate a service error into the HTTP response routers raise."""
    return HTTPException(status_code=exc.status_code, detail=exc.to_detail())
