# Overview: Flask API routes for catalog lookups (services, products, staff); read-only.

from flask import Blueprint, request, jsonify

from ..services import catalog_service


catalog_bp = Blueprint("catalog", __name__, url_prefix="/api/catalog")


def _include_inactive() -> bool:
    return request.args.get("include_inactive", "false").lower() == "true"


@catalog_bp.get("/services")
def list_services_route():
    services = catalog_service.list_services(include_inactive=_include_inactive())
    return jsonify({"services": [s.to_dict() for s in services]}), 200


@catalog_bp.get("/products")
def list_products_route():
    products = catalog_service.list_products(include_inactive=_include_inactive())
    return jsonify({"products": [p.to_dict() for p in products]}), 200


@catalog_bp.get("/products/reorder")
def list_reorder_route():
    """Active products at or below minimum stock."""
    products = catalog_service.list_reorder_candidates()
    return jsonify({"products": [p.to_dict() for p in products]}), 200


@catalog_bp.get("/staff")
def list_staff_route():
    staff = catalog_service.list_active_staff()
    return jsonify({"staff": [s.to_dict() for s in staff]}), 200
