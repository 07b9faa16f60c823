# Overview: Flask API routes for tabs (comandas); item edits, discount, settlement and cancellation.

# backend/barbertab/routes/tabs.py
"""Tab API routes"""

from flask import Blueprint, request, jsonify, current_app

from ..errors import PipelineError, ValidationError
from ..models import Tab
from ..models.tabs import TAB_CANCELLED, TAB_OPEN, TAB_PAID
from ..services import settlement_service, tab_service
from ..validation import ModelValidationPolicy, coerce_int, require_fields, validate_payload


tabs_bp = Blueprint("tabs", __name__, url_prefix="/api/tabs")

WALK_IN_POLICY = ModelValidationPolicy(
    writable_fields={"client_id", "staff_id"},
    required_on_create={"client_id"},
)

TAB_STATUSES = (TAB_OPEN, TAB_PAID, TAB_CANCELLED)


@tabs_bp.post("/")
def open_tab_route():
    """Open a walk-in tab (no appointment)."""
    try:
        patch = validate_payload(
            model=Tab,
            payload=request.get_json(silent=True),
            policy=WALK_IN_POLICY,
            partial=False,
        )
        tab = tab_service.open_walk_in_tab(patch["client_id"], patch.get("staff_id"))
        return jsonify({"tab": tab.to_dict()}), 201

    except PipelineError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to open tab")
        return jsonify({"error": "Internal server error"}), 500


@tabs_bp.get("/")
def list_tabs_route():
    try:
        status = request.args.get("status")
        if status is not None and status not in TAB_STATUSES:
            raise ValidationError(f"status must be one of {list(TAB_STATUSES)}", {"status": status})
        client_id = request.args.get("client_id")

        tabs = tab_service.list_tabs(
            status=status,
            client_id=coerce_int("client_id", client_id) if client_id else None,
        )
        return jsonify({"tabs": [t.to_dict(include_lines=False) for t in tabs]}), 200

    except PipelineError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list tabs")
        return jsonify({"error": "Internal server error"}), 500


@tabs_bp.get("/<int:tab_id>")
def get_tab_route(tab_id: int):
    try:
        tab = tab_service.get_tab(tab_id)
        return jsonify({"tab": tab.to_dict()}), 200

    except PipelineError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to load tab")
        return jsonify({"error": "Internal server error"}), 500


@tabs_bp.patch("/<int:tab_id>/items")
def update_items_route(tab_id: int):
    """
    Edit line items on an open tab.

    Body:
    - {"action": "add", "kind", "catalog_ref_id", "quantity"?, "responsible_staff_id"?}
    - {"action": "remove", "line_item_id"}
    - {"action": "reassign", "line_item_id", "staff_id"}
    """
    try:
        data = require_fields(request.get_json(silent=True), "action")
        action = data["action"]

        if action == "add":
            require_fields(data, "kind", "catalog_ref_id")
            tab = tab_service.add_line_item(
                tab_id,
                kind=data["kind"],
                catalog_ref_id=data["catalog_ref_id"],
                quantity=data.get("quantity", 1),
                responsible_staff_id=data.get("responsible_staff_id"),
            )
        elif action == "remove":
            require_fields(data, "line_item_id")
            tab = tab_service.remove_line_item(tab_id, coerce_int("line_item_id", data["line_item_id"]))
        elif action == "reassign":
            require_fields(data, "line_item_id", "staff_id")
            tab = tab_service.reassign_responsible(
                tab_id,
                coerce_int("line_item_id", data["line_item_id"]),
                data["staff_id"],
            )
        else:
            raise ValidationError("action must be one of add, remove, reassign", {"action": action})

        return jsonify({"tab": tab.to_dict()}), 200

    except PipelineError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update tab items")
        return jsonify({"error": "Internal server error"}), 500


@tabs_bp.patch("/<int:tab_id>/discount")
def set_discount_route(tab_id: int):
    try:
        data = require_fields(request.get_json(silent=True), "discount_cents")
        tab = tab_service.set_discount(tab_id, data["discount_cents"])
        return jsonify({"tab": tab.to_dict()}), 200

    except PipelineError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to set tab discount")
        return jsonify({"error": "Internal server error"}), 500


@tabs_bp.post("/<int:tab_id>/settle")
def settle_tab_route(tab_id: int):
    """
    Settle an open tab: stock out, tab paid, income posted.

    A 502 with details.stage == "ledger" means the tab IS paid but the
    ledger entry is missing; retry with POST /api/tabs/<id>/ledger.
    """
    try:
        data = require_fields(request.get_json(silent=True), "payment_method")
        items = data.get("items")
        if items is not None and not isinstance(items, list):
            raise ValidationError("items must be a list")

        tab, transaction = settlement_service.settle(tab_id, data["payment_method"], items=items)
        return jsonify({"tab": tab.to_dict(), "transaction": transaction.to_dict()}), 200

    except PipelineError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to settle tab")
        return jsonify({"error": "Internal server error"}), 500


@tabs_bp.post("/<int:tab_id>/cancel")
def cancel_tab_route(tab_id: int):
    try:
        data = request.get_json(silent=True) or {}
        tab = settlement_service.cancel_tab(tab_id, reason=data.get("reason"))
        return jsonify({"tab": tab.to_dict()}), 200

    except PipelineError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to cancel tab")
        return jsonify({"error": "Internal server error"}), 500


@tabs_bp.post("/<int:tab_id>/ledger")
def post_ledger_route(tab_id: int):
    """Post the missing ledger entry of a paid tab."""
    try:
        data = request.get_json(silent=True) or {}
        transaction = settlement_service.post_settlement_transaction(
            tab_id, payment_method=data.get("payment_method")
        )
        return jsonify({"transaction": transaction.to_dict()}), 201

    except PipelineError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to post tab ledger entry")
        return jsonify({"error": "Internal server error"}), 500
