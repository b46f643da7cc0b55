# Overview: Flask API routes for credit review; parses input and returns JSON responses.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import error_response, require_actor
from ..errors import EngineError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Customer, Organization
from ..services import credit_service


credit_bp = Blueprint("credit", __name__, url_prefix="/api/credit")


def _decision_payload(sale, log) -> dict:
    return {"sale": sale.to_dict(), "log": log.to_dict()}


@credit_bp.get("/pending")
@require_actor
def pending_credit_route():
    """Sales awaiting credit review in the caller's organization."""
    try:
        return jsonify({"items": credit_service.get_pending_credit_sales(g.org_id)}), 200
    except EngineError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list pending credit sales")
        return jsonify({"error": "Internal server error"}), 500


@credit_bp.get("/customers/<int:customer_id>")
@require_actor
def customer_credit_route(customer_id: int):
    try:
        info = credit_service.get_customer_credit_info(customer_id, g.org_id)
        return jsonify({"customer_id": customer_id, "credit": info.to_dict()}), 200
    except EngineError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load customer credit")
        return jsonify({"error": "Internal server error"}), 500


@credit_bp.post("/check")
@require_actor
def check_admission_route():
    """
    Dry-run admission check for a prospective credit sale.

    Body: customer_id, sale_total_cents, exclude_sale_id?
    """
    try:
        data = request.get_json() or {}
        customer_id = data.get("customer_id")
        sale_total = data.get("sale_total_cents")
        if not isinstance(sale_total, int) or isinstance(sale_total, bool) or sale_total < 0:
            raise ValidationError("sale_total_cents must be a non-negative integer")

        credit_limit = None
        if customer_id is not None:
            customer = db.session.query(Customer).filter_by(id=customer_id, org_id=g.org_id).first()
            if not customer:
                raise NotFoundError(f"Customer {customer_id} not found", details={"customer_id": customer_id})
            credit_limit = customer.credit_limit_cents

        org = db.session.query(Organization).filter_by(id=g.org_id).first()
        decision = credit_service.can_customer_make_credit_sale(
            customer_id=customer_id,
            credit_limit=credit_limit,
            sale_total=sale_total,
            exclude_sale_id=data.get("exclude_sale_id"),
            currency_code=org.currency_code if org else None,
        )
        return jsonify(decision.to_dict()), 200

    except EngineError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to check credit admission")
        return jsonify({"error": "Internal server error"}), 500


@credit_bp.post("/sales/<int:sale_id>/approve")
@require_actor
def approve_credit_route(sale_id: int):
    try:
        data = request.get_json() or {}
        sale, log = credit_service.approve_credit(
            sale_id,
            approver_id=g.actor_id,
            reason=data.get("reason"),
            details=data.get("details"),
            org_id=g.org_id,
        )
        return jsonify(_decision_payload(sale, log)), 200

    except EngineError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to approve credit")
        return jsonify({"error": "Internal server error"}), 500


@credit_bp.post("/sales/<int:sale_id>/deny")
@require_actor
def deny_credit_route(sale_id: int):
    try:
        data = request.get_json() or {}
        sale, log = credit_service.deny_credit(
            sale_id,
            approver_id=g.actor_id,
            reason=data.get("reason"),
            details=data.get("details"),
            org_id=g.org_id,
        )
        return jsonify(_decision_payload(sale, log)), 200

    except EngineError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to deny credit")
        return jsonify({"error": "Internal server error"}), 500


@credit_bp.post("/sales/<int:sale_id>/adjustment")
@require_actor
def request_adjustment_route(sale_id: int):
    try:
        data = request.get_json() or {}
        sale, log = credit_service.request_credit_adjustment(
            sale_id,
            approver_id=g.actor_id,
            reason=data.get("reason"),
            adjustment_type=data.get("adjustment_type"),
            adjustment_details=data.get("adjustment_details"),
            details=data.get("details"),
            org_id=g.org_id,
        )
        return jsonify(_decision_payload(sale, log)), 200

    except EngineError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to request credit adjustment")
        return jsonify({"error": "Internal server error"}), 500


@credit_bp.get("/sales/<int:sale_id>/logs")
@require_actor
def credit_logs_route(sale_id: int):
    try:
        logs = credit_service.get_credit_logs(sale_id, org_id=g.org_id)
        return jsonify({"items": [log.to_dict() for log in logs]}), 200
    except EngineError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load credit logs")
        return jsonify({"error": "Internal server error"}), 500
