# Overview: Flask API routes for daily reports; parses input and returns JSON responses.

# backend/fieldsales/routes/reports.py
"""
Daily report routes.

SECURITY: All routes require authentication.
- Reps submit and read their own reports
- Admins may edit any report in the company (report_id required) and delete reports

Stock side effects (sample withdrawals and returns) happen inside
report_service; these routes only translate errors to HTTP statuses.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..models import ROLE_ADMIN
from ..services import report_service
from ..services.report_service import (
    ReportError,
    ReportNotFoundError,
    ReportAccessError,
    ReportConflictError,
    ReconciliationFatalError,
)
from ..services.stock_service import StockError, StockChangedError
from ..validation import ValidationError, coerce_int
from ..decorators import require_auth, require_role


reports_bp = Blueprint("reports", __name__, url_prefix="/api/daily-reports")


def _report_error_response(e: ReportError):
    if isinstance(e, ReportNotFoundError):
        return jsonify({"error": str(e)}), 404
    if isinstance(e, ReportAccessError):
        return jsonify({"error": str(e), "details": e.details}), 403
    if isinstance(e, ReportConflictError):
        return jsonify({"error": str(e), "details": e.details}), 409
    if isinstance(e, ReconciliationFatalError):
        return jsonify({"error": "Report could not be saved, contact support"}), 500
    return jsonify({"error": str(e), "details": e.details}), 400


@reports_bp.post("/")
@require_auth
def submit_report_route():
    """
    Create or update a daily report.

    Body:
        visits: [{customer_id, status, reason?, notes?, duration_minutes?}]
        samples: [{id?, product_id, quantity, kind, customer_id?, notes?}]
        deleted_sample_ids: [int]
        notes, report_id (admin), kept_attachments, new_attachments,
        date (optional YYYY-MM-DD; a rep may only name today in the company timezone)

    Returns 201 when the report was created, 200 when updated.
    """
    data = request.get_json(silent=True) or {}

    try:
        report_id = data.get("report_id")
        if report_id is not None:
            report_id = coerce_int(report_id, "report_id", minimum=1)

        result = report_service.submit_report(
            company_id=g.company_id,
            actor=g.current_user,
            visits=data.get("visits"),
            samples=data.get("samples"),
            deleted_sample_ids=data.get("deleted_sample_ids"),
            notes=data.get("notes"),
            report_id=report_id,
            kept_attachments=data.get("kept_attachments"),
            new_attachments=data.get("new_attachments"),
            requested_date=data.get("date"),
        )
        return jsonify(result), 201 if result["created"] else 200

    except ValidationError as e:
        return jsonify({"error": str(e), "details": e.details}), 400
    except StockChangedError as e:
        return jsonify({"error": str(e), "details": e.details}), 409
    except StockError as e:
        return jsonify({"error": str(e), "details": e.details}), 400
    except ReportError as e:
        return _report_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to submit daily report")
        return jsonify({"error": "Internal server error"}), 500


@reports_bp.get("/<int:report_id>")
@require_auth
def get_report_route(report_id: int):
    try:
        report = report_service.get_report_detail(
            company_id=g.company_id,
            actor=g.current_user,
            report_id=report_id,
        )
        return jsonify({"report": report}), 200
    except ReportError as e:
        return _report_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load daily report")
        return jsonify({"error": "Internal server error"}), 500


@reports_bp.delete("/<int:report_id>")
@require_auth
@require_role(ROLE_ADMIN)
def delete_report_route(report_id: int):
    """
    Delete a report and return its samples to the rep's stock.

    Available to: admin
    """
    try:
        summary = report_service.delete_report(
            company_id=g.company_id,
            actor=g.current_user,
            report_id=report_id,
        )
        return jsonify({"deleted": summary}), 200
    except StockChangedError as e:
        return jsonify({"error": str(e), "details": e.details}), 409
    except ReportError as e:
        return _report_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to delete daily report")
        return jsonify({"error": "Internal server error"}), 500
