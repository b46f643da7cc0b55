# Overview: Flask API routes for price control settings and discount approvals.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import error_response, require_actor
from ..errors import EngineError, ValidationError
from ..services import pricing_service
from ..services.price_policy import validate_item_price


pricing_bp = Blueprint("pricing", __name__, url_prefix="/api/pricing")


@pricing_bp.get("/settings")
@require_actor
def get_settings_route():
    try:
        settings = pricing_service.get_price_control_settings(g.org_id)
        return jsonify({"settings": settings.to_dict() if settings else None}), 200
    except Exception:
        current_app.logger.exception("Failed to load price control settings")
        return jsonify({"error": "Internal server error"}), 500


@pricing_bp.put("/settings")
@require_actor
def save_settings_route():
    try:
        data = request.get_json() or {}
        settings = pricing_service.save_price_control_settings(g.org_id, **data)
        return jsonify({"settings": settings.to_dict()}), 200

    except EngineError as e:
        return error_response(e)
    except (TypeError, ValueError):
        return jsonify({"error": "Invalid price control settings"}), 400
    except Exception:
        current_app.logger.exception("Failed to save price control settings")
        return jsonify({"error": "Internal server error"}), 500


@pricing_bp.post("/validate")
@require_actor
def validate_price_route():
    """
    Evaluate one price against the organization's policy without writing.

    Body: original_price_cents, final_price_cents, minimum_price_cents?,
    max_discount_percent?
    """
    try:
        data = request.get_json() or {}
        original = data.get("original_price_cents")
        final = data.get("final_price_cents")
        if not isinstance(original, int) or not isinstance(final, int):
            raise ValidationError("original_price_cents and final_price_cents must be integers")

        result = validate_item_price(
            original_price=original,
            final_price=final,
            minimum_price=data.get("minimum_price_cents"),
            max_discount_percent=data.get("max_discount_percent"),
            settings=pricing_service.get_price_control_settings(g.org_id),
        )
        return jsonify(result.to_dict()), 200

    except EngineError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to validate price")
        return jsonify({"error": "Internal server error"}), 500


@pricing_bp.post("/sales/<int:sale_id>/apply")
@require_actor
def apply_policy_route(sale_id: int):
    try:
        results = pricing_service.apply_price_policy(sale_id, org_id=g.org_id)
        return jsonify({"items": results}), 200

    except EngineError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to apply price policy")
        return jsonify({"error": "Internal server error"}), 500


@pricing_bp.post("/items/<int:item_id>/approve")
@require_actor
def approve_item_route(item_id: int):
    try:
        item = pricing_service.approve_sale_item(item_id, approver_id=g.actor_id, org_id=g.org_id)
        return jsonify({"item": item.to_dict(), "sale": item.sale.to_dict()}), 200

    except EngineError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to approve sale item")
        return jsonify({"error": "Internal server error"}), 500


@pricing_bp.post("/sales/<int:sale_id>/approve")
@require_actor
def approve_sale_route(sale_id: int):
    try:
        sale = pricing_service.approve_sale(sale_id, approver_id=g.actor_id, org_id=g.org_id)
        return jsonify({"sale": sale.to_dict()}), 200

    except EngineError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to approve sale prices")
        return jsonify({"error": "Internal server error"}), 500


@pricing_bp.post("/sales/<int:sale_id>/reject")
@require_actor
def reject_sale_route(sale_id: int):
    try:
        data = request.get_json() or {}
        sale = pricing_service.reject_sale(
            sale_id, approver_id=g.actor_id, reason=data.get("reason"), org_id=g.org_id
        )
        return jsonify({"sale": sale.to_dict()}), 200

    except EngineError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to reject sale prices")
        return jsonify({"error": "Internal server error"}), 500
