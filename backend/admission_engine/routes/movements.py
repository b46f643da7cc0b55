# Overview: Flask API routes for financial movements and reversals.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import error_response, require_actor
from ..errors import EngineError, ValidationError
from ..services import audit_service, movement_service, reversal_service
from ..time_utils import parse_iso_date


movements_bp = Blueprint("movements", __name__, url_prefix="/api/movements")


@movements_bp.post("/")
@require_actor
def post_movement_route():
    """
    Post a movement.

    Body: account_id, direction (in|out), value_cents, description?,
    movement_date? (YYYY-MM-DD), nature_id?, cost_center_id?
    """
    try:
        data = request.get_json() or {}
        try:
            movement_date = parse_iso_date(data.get("movement_date"))
        except ValueError:
            raise ValidationError("movement_date must be YYYY-MM-DD")

        movement = movement_service.post_movement(
            org_id=g.org_id,
            account_id=data.get("account_id"),
            direction=data.get("direction"),
            value_cents=data.get("value_cents"),
            description=data.get("description") or "",
            movement_date=movement_date,
            nature_id=data.get("nature_id"),
            cost_center_id=data.get("cost_center_id"),
            created_by_user_id=g.actor_id,
        )
        return jsonify({"movement": movement.to_dict()}), 201

    except EngineError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to post movement")
        return jsonify({"error": "Internal server error"}), 500


@movements_bp.get("/<int:movement_id>")
@require_actor
def get_movement_route(movement_id: int):
    try:
        movement = movement_service.get_movement(movement_id, org_id=g.org_id)
        return jsonify({
            "movement": movement.to_dict(),
            "logs": [log.to_dict() for log in audit_service.get_movement_logs(movement.id)],
        }), 200
    except EngineError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load movement")
        return jsonify({"error": "Internal server error"}), 500


@movements_bp.post("/<int:movement_id>/reverse")
@require_actor
def reverse_movement_route(movement_id: int):
    try:
        data = request.get_json() or {}
        result = reversal_service.reverse_movement(
            movement_id,
            reason=data.get("reason"),
            actor_user_id=g.actor_id,
            org_id=g.org_id,
        )
        return jsonify(result.to_dict()), 201

    except EngineError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to reverse movement")
        return jsonify({"error": "Internal server error"}), 500


@movements_bp.get("/accounts/<int:account_id>/balance")
@require_actor
def account_balance_route(account_id: int):
    try:
        balance = movement_service.get_account_balance(account_id, g.org_id)
        return jsonify({"account_id": account_id, "balance_cents": balance}), 200
    except Exception:
        current_app.logger.exception("Failed to compute account balance")
        return jsonify({"error": "Internal server error"}), 500
