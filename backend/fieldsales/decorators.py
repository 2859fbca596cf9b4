# Overview: Request and role decorators for API routes.

from functools import wraps
from flask import request, jsonify, g, current_app

from .extensions import db
from .models import User, Company


def _is_authenticated() -> bool:
    return hasattr(g, 'current_user') and hasattr(g, 'company_id')


def require_auth(f):
    """
    Require an authenticated user and establish tenant context.

    Identity is issued upstream by the auth gateway, which forwards the
    authenticated user id in the X-User-Id header.

    MULTI-TENANT: Sets the following Flask g attributes:
    - g.current_user: The acting User object
    - g.company_id: The user's company (tenant context)

    Returns 401 if:
    - No X-User-Id header, or not an integer
    - Unknown or deactivated user
    - Deactivated company
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        raw = request.headers.get("X-User-Id", "").strip()
        if not raw:
            return jsonify({"error": "Authentication required"}), 401
        try:
            user_id = int(raw)
        except ValueError:
            return jsonify({"error": "Invalid user identity"}), 401

        user = db.session.get(User, user_id)
        if user is None or not user.is_active:
            return jsonify({"error": "Invalid or inactive user"}), 401

        company = db.session.get(Company, user.company_id)
        if company is None or not company.is_active:
            current_app.logger.warning(
                "Rejected request for user %s: company %s inactive", user.id, user.company_id
            )
            return jsonify({"error": "Company is not active"}), 401

        g.current_user = user
        g.company_id = user.company_id

        return f(*args, **kwargs)

    return decorated_function


def require_role(*roles):
    """Require the authenticated user to hold one of the given roles."""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            # Ensure @require_auth was called first
            if not _is_authenticated():
                return jsonify({"error": "Authentication required"}), 401

            if g.current_user.role not in roles:
                return jsonify({
                    "error": "Permission denied",
                    "required_roles": list(roles),
                }), 403

            return f(*args, **kwargs)

        return decorated_function
    return decorator
