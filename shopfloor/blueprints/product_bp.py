"""Product blueprint — catalog CRUD, categories, statistics.

Endpoint groups:
  Products          GET/POST        /api/v1/products
                    GET/PUT/DELETE  /api/v1/products/<id>
  Categories        GET             /api/v1/products/categories
  Statistics        GET             /api/v1/products/stats

Every role reads the catalog; writes are admin-only.
"""

from __future__ import annotations

import logging

from flask import Blueprint, jsonify, request

import shopfloor.services.product_service as prs
from shopfloor.core.roles import Capability
from shopfloor.middleware.permission_required import current_context, require_capability
from shopfloor.utils.errors import E, api_error, register_error_handlers
from shopfloor.utils.helpers import parse_pagination

logger = logging.getLogger(__name__)

product_bp = Blueprint("products", __name__, url_prefix="/api/v1/products")

register_error_handlers(product_bp)


def _json_body() -> tuple[dict | None, tuple | None]:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return None, api_error(E.VALIDATION_INVALID, "Request body must be a JSON object")
    return data, None


@product_bp.route("", methods=["GET"])
@require_capability(Capability.PRODUCT_VIEW)
def list_products():
    """Query params: page, limit, status, category"""
    page, limit = parse_pagination(request.args)
    items, pagination = prs.list_products(
        current_context(),
        page=page, limit=limit,
        status=request.args.get("status"),
        category=request.args.get("category"),
    )
    return jsonify({"items": [p.to_dict() for p in items], "pagination": pagination}), 200


@product_bp.route("/stats", methods=["GET"])
@require_capability(Capability.PRODUCT_VIEW)
def product_stats():
    return jsonify(prs.product_stats(current_context())), 200


@product_bp.route("/categories", methods=["GET"])
@require_capability(Capability.PRODUCT_VIEW)
def product_categories():
    return jsonify({"categories": prs.product_categories(current_context())}), 200


@product_bp.route("/<int:product_id>", methods=["GET"])
@require_capability(Capability.PRODUCT_VIEW)
def get_product(product_id):
    return jsonify(prs.get_product(current_context(), product_id).to_dict()), 200


@product_bp.route("", methods=["POST"])
@require_capability(Capability.PRODUCT_CREATE)
def create_product():
    """Create a product with its process route.

    Body: {
        name, sku, category,
        process_stages: [{name, order, estimated_duration_min, target_quantity?,
                          description?, required_skills?, quality_checks?}, ...],
        description?, specifications?, status?
    }
    """
    data, err = _json_body()
    if err:
        return err
    product = prs.create_product(current_context(), data)
    return jsonify(product.to_dict()), 201


@product_bp.route("/<int:product_id>", methods=["PUT"])
@require_capability(Capability.PRODUCT_UPDATE)
def update_product(product_id):
    data, err = _json_body()
    if err:
        return err
    product = prs.update_product(current_context(), product_id, data)
    return jsonify(product.to_dict()), 200


@product_bp.route("/<int:product_id>", methods=["DELETE"])
@require_capability(Capability.PRODUCT_DELETE)
def delete_product(product_id):
    prs.delete_product(current_context(), product_id)
    return jsonify({"message": "Product deleted"}), 200
