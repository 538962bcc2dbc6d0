# Overview: Request decorators for API routes.

from functools import wraps

from flask import current_app, g, jsonify, request

from .extensions import db
from .services.tenant_service import resolve_user, validate_org_active
from .errors import TenantAccessError

ORG_HEADER = "X-Org-Id"
USER_HEADER = "X-User-Id"


def _header_int(name: str):
    raw = request.headers.get(name, "").strip()
    if not raw.isdigit():
        return None
    return int(raw)


def require_auth(f):
    """
    Establish tenant context from the identity gateway headers.

    The gateway authenticates the caller and forwards X-Org-Id and
    X-User-Id. Both are re-checked here against the database.

    MULTI-TENANT: Sets the following Flask g attributes:
    - g.current_user: The acting User object
    - g.org_id: The organization ID (tenant context)

    SECURITY: Returns 401 if:
    - Either header is missing or not an integer
    - Organization missing or deactivated
    - User missing, deactivated, or belongs to another organization
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        org_id = _header_int(ORG_HEADER)
        user_id = _header_int(USER_HEADER)

        if org_id is None or user_id is None:
            return jsonify({"error": "Authentication required"}), 401

        try:
            validate_org_active(org_id)
            user = resolve_user(org_id, user_id)
        except TenantAccessError as e:
            db.session.rollback()
            current_app.logger.warning(
                "AUTH_REJECTED org=%s user=%s path=%s reason=%s",
                org_id, user_id, request.path, e,
            )
            return jsonify({"error": "Invalid tenant context"}), 401

        g.current_user = user
        g.org_id = org_id

        return f(*args, **kwargs)

    return decorated_function


def require_role(role: str):
    """
    Require the authenticated user to hold a role.

    Apply after @require_auth. Returns 403 when the role does not match;
    the services repeat the check for non-HTTP callers.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            user = getattr(g, "current_user", None)
            if user is None or getattr(g, "org_id", None) is None:
                return jsonify({"error": "Authentication required"}), 401

            if user.role != role:
                current_app.logger.warning(
                    "PERMISSION_DENIED org=%s user=%s path=%s required_role=%s actual_role=%s",
                    g.org_id, user.id, request.path, role, user.role,
                )
                return jsonify({
                    "error": "Permission denied",
                    "required_role": role,
                }), 403

            return f(*args, **kwargs)

        return decorated_function
    return decorator
