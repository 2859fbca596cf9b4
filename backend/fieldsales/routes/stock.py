# backend/fieldsales/routes/stock.py
"""
Rep stock routes.

SECURITY: All routes require authentication.
- Reps view their own stock and history
- Admins view per-product holdings, assign stock and audit balances

Balances are never written directly: assignment goes through the ledger.
"""
from flask import Blueprint, request, jsonify, g, current_app

from ..models import ROLE_ADMIN
from ..services import stock_service
from ..services.stock_service import StockError, StockChangedError
from ..validation import ValidationError, coerce_int
from ..decorators import require_auth, require_role
from ..time_utils import parse_iso_datetime


stock_bp = Blueprint("stock", __name__, url_prefix="/api/rep-stock")


@stock_bp.get("/mine")
@require_auth
def my_stock_route():
    """The authenticated rep's stock per product."""
    items = stock_service.list_rep_stock(g.company_id, g.current_user.id)
    return jsonify({"items": items}), 200


@stock_bp.get("/products/<int:product_id>")
@require_auth
@require_role(ROLE_ADMIN)
def product_stock_route(product_id: int):
    """
    Holdings of one product across reps, with month-to-date totals.

    Query params: since (ISO-8601, optional; defaults to the start of the month)
    Available to: admin
    """
    try:
        since = parse_iso_datetime(request.args.get("since"))
    except ValueError:
        return jsonify({"error": "since must be an ISO-8601 datetime"}), 400

    try:
        reps = stock_service.product_stock_by_reps(g.company_id, product_id, since=since)
        return jsonify({"product_id": product_id, "reps": reps}), 200
    except StockError as e:
        return jsonify({"error": str(e)}), 404


@stock_bp.put("/")
@require_auth
@require_role(ROLE_ADMIN)
def set_stock_route():
    """
    Set a rep's quantity of a product.

    Body: {rep_id, product_id, quantity, include_in_analysis?}
    Available to: admin
    """
    data = request.get_json(silent=True) or {}

    try:
        rep_id = coerce_int(data.get("rep_id"), "rep_id", minimum=1)
        product_id = coerce_int(data.get("product_id"), "product_id", minimum=1)
        quantity = coerce_int(data.get("quantity"), "quantity", minimum=0)
        include_in_analysis = data.get("include_in_analysis", True)
        if not isinstance(include_in_analysis, bool):
            raise ValidationError("include_in_analysis must be a boolean")

        result = stock_service.set_rep_stock(
            company_id=g.company_id,
            actor=g.current_user,
            rep_id=rep_id,
            product_id=product_id,
            quantity=quantity,
            include_in_analysis=include_in_analysis,
        )
        return jsonify(result), 200

    except ValidationError as e:
        return jsonify({"error": str(e), "details": e.details}), 400
    except StockChangedError as e:
        return jsonify({"error": str(e), "details": e.details}), 409
    except StockError as e:
        return jsonify({"error": str(e), "details": e.details}), 400
    except Exception:
        current_app.logger.exception("Failed to set rep stock")
        return jsonify({"error": "Internal server error"}), 500


@stock_bp.get("/history")
@require_auth
def stock_history_route():
    """
    Ledger history, newest first.

    Reps always see their own entries; admins may filter by rep_id.
    Query: rep_id?, product_id?, limit? (1..500, default 200)
    """
    try:
        rep_id = request.args.get("rep_id")
        product_id = request.args.get("product_id")
        limit = request.args.get("limit")

        rep_id = coerce_int(rep_id, "rep_id", minimum=1) if rep_id else None
        product_id = coerce_int(product_id, "product_id", minimum=1) if product_id else None
        limit = min(coerce_int(limit, "limit", minimum=1), 500) if limit else 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    if not g.current_user.is_admin:
        rep_id = g.current_user.id

    entries = stock_service.list_stock_history(
        g.company_id,
        rep_id=rep_id,
        product_id=product_id,
        limit=limit,
    )
    return jsonify({"entries": [e.to_dict() for e in entries]}), 200


@stock_bp.get("/verify")
@require_auth
@require_role(ROLE_ADMIN)
def verify_stock_route():
    """
    Compare cached balances with ledger replay for the company.

    Returns 200 with an empty drift list when consistent.
    """
    drift = stock_service.verify_balances(g.company_id)
    return jsonify({"consistent": not drift, "drift": drift}), 200
