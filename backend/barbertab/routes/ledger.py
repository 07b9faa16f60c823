# Overview: Flask API routes for the financial ledger; read-only listing and settlement gaps.

from flask import Blueprint, request, jsonify, current_app

from ..errors import PipelineError, ValidationError
from ..services import ledger_service, settlement_service
from ..validation import coerce_int
from barbertab.time_utils import parse_iso_datetime


ledger_bp = Blueprint("ledger", __name__, url_prefix="/api/ledger")


def _parse_bound(name: str):
    raw = request.args.get(name)
    if not raw:
        return None
    try:
        return parse_iso_datetime(raw)
    except ValueError:
        raise ValidationError(f"{name} must be an ISO-8601 datetime", {name: raw})


@ledger_bp.get("/transactions")
def list_transactions_route():
    """?type=income|expense&from=<iso>&to=<iso>&limit=N (from inclusive, to exclusive)"""
    try:
        limit = coerce_int("limit", request.args.get("limit", "200"))
        if limit < 1 or limit > 1000:
            raise ValidationError("limit must be between 1 and 1000")

        transactions = ledger_service.list_transactions(
            type=request.args.get("type"),
            start=_parse_bound("from"),
            end=_parse_bound("to"),
            limit=limit,
        )
        return jsonify({"transactions": [t.to_dict() for t in transactions]}), 200

    except PipelineError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list transactions")
        return jsonify({"error": "Internal server error"}), 500


@ledger_bp.get("/unposted")
def list_unposted_route():
    """Paid tabs whose income entry is missing."""
    try:
        tabs = settlement_service.find_unposted_settlements()
        return jsonify({"tabs": [t.to_dict(include_lines=False) for t in tabs]}), 200
    except Exception:
        current_app.logger.exception("Failed to list unposted settlements")
        return jsonify({"error": "Internal server error"}), 500
