# backend/fieldsales/routes/customers.py
"""
Customer directory and visit plan routes.

SECURITY: All routes require authentication and the admin role.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..models import ROLE_ADMIN
from ..services import customer_service, visit_plan_service
from ..services.customer_service import CustomerNotFoundError, CustomerCleanupError
from ..services.stock_service import StockChangedError
from ..validation import ValidationError
from ..decorators import require_auth, require_role


customers_bp = Blueprint("customers", __name__, url_prefix="/api")


@customers_bp.delete("/customers/<int:customer_id>")
@require_auth
@require_role(ROLE_ADMIN)
def delete_customer_route(customer_id: int):
    """
    Permanently delete a customer.

    Cascades: visit plans are scrubbed, the customer's visits are removed
    from daily reports (reports left empty are deleted and their samples
    returned to stock), then the customer row is deleted.

    Returns 503 with the resume cursor if the cleanup was interrupted;
    repeating the request resumes it.
    """
    try:
        summary = customer_service.delete_customer(
            company_id=g.company_id,
            actor=g.current_user,
            customer_id=customer_id,
        )
        return jsonify(summary), 200
    except CustomerNotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except CustomerCleanupError as e:
        return jsonify({"error": str(e), "details": e.details}), 503
    except StockChangedError as e:
        return jsonify({"error": str(e), "details": e.details}), 409
    except Exception:
        current_app.logger.exception("Failed to delete customer")
        return jsonify({"error": "Internal server error"}), 500


@customers_bp.put("/visit-plans/<int:rep_id>")
@require_auth
@require_role(ROLE_ADMIN)
def save_visit_plan_route(rep_id: int):
    """
    Replace a rep's weekly visit plan.

    Body: {"days": [{"day": "Monday", "customer_ids": [1, 2]}]}
    """
    data = request.get_json(silent=True) or {}

    try:
        plan = visit_plan_service.save_visit_plan(g.company_id, rep_id, data.get("days"))
        return jsonify({"plan": plan.to_dict()}), 200
    except ValidationError as e:
        return jsonify({"error": str(e), "details": e.details}), 400
    except Exception:
        current_app.logger.exception("Failed to save visit plan")
        return jsonify({"error": "Internal server error"}), 500
