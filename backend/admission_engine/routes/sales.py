# Overview: Flask API routes for checkout and sale lifecycle; parses input and returns JSON responses.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import error_response, require_actor
from ..errors import EngineError
from ..services import pendency_service, sales_service


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


def _sale_payload(sale) -> dict:
    codes = pendency_service.codes_of(sale)
    return {
        "sale": sale.to_dict(),
        "items": [item.to_dict() for item in sale.items],
        "pendencies": [
            {"code": c, "description": pendency_service.describe_code(c)}
            for c in pendency_service.VALID_CODES
            if c in codes
        ],
        "can_invoice": not codes,
    }


@sales_bp.post("/")
@require_actor
def create_sale_route():
    """
    Checkout: create a sale and attach its pendencies.

    Body: items[], payment_method | payment_method_id, customer_id?,
    discount_cents?, notes?
    """
    try:
        data = request.get_json() or {}
        sale, admission = sales_service.create_sale(
            org_id=g.org_id,
            items=data.get("items") or [],
            payment_method=data.get("payment_method"),
            payment_method_id=data.get("payment_method_id"),
            customer_id=data.get("customer_id"),
            discount_cents=data.get("discount_cents") or 0,
            actor_user_id=g.actor_id,
            notes=data.get("notes"),
        )
        payload = _sale_payload(sale)
        payload["admission"] = admission.to_dict() if admission else None
        return jsonify(payload), 201

    except EngineError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("/<int:sale_id>")
@require_actor
def get_sale_route(sale_id: int):
    try:
        sale = sales_service.get_sale(sale_id, org_id=g.org_id)
        return jsonify(_sale_payload(sale)), 200
    except EngineError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.post("/<int:sale_id>/invoice")
@require_actor
def invoice_sale_route(sale_id: int):
    try:
        sale = sales_service.mark_invoiced(sale_id, actor_user_id=g.actor_id, org_id=g.org_id)
        return jsonify(_sale_payload(sale)), 200

    except EngineError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to invoice sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.post("/<int:sale_id>/cancel")
@require_actor
def cancel_sale_route(sale_id: int):
    try:
        data = request.get_json() or {}
        sale = sales_service.cancel_sale(
            sale_id, actor_user_id=g.actor_id, reason=data.get("reason"), org_id=g.org_id
        )
        return jsonify(_sale_payload(sale)), 200

    except EngineError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to cancel sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.post("/<int:sale_id>/payment-method")
@require_actor
def change_payment_method_route(sale_id: int):
    try:
        data = request.get_json() or {}
        sale, admission = sales_service.change_payment_method(
            sale_id,
            payment_method=data.get("payment_method"),
            payment_method_id=data.get("payment_method_id"),
            org_id=g.org_id,
        )
        payload = _sale_payload(sale)
        payload["admission"] = admission.to_dict() if admission else None
        return jsonify(payload), 200

    except EngineError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to change payment method")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.post("/<int:sale_id>/payment-status")
@require_actor
def set_payment_status_route(sale_id: int):
    try:
        data = request.get_json() or {}
        sale = sales_service.set_payment_status(sale_id, data.get("payment_status"), org_id=g.org_id)
        return jsonify({"sale": sale.to_dict()}), 200

    except EngineError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to set payment status")
        return jsonify({"error": "Internal server error"}), 500
