# Overview: Flask API routes for membership tiers, members and point history.

# backend/bizdesk/routes/members.py
from flask import Blueprint, request, jsonify, current_app

from ..services import membership_service
from .errors import DOMAIN_ERRORS, error_response, require_json


members_bp = Blueprint("members", __name__, url_prefix="/api/members")


# =============================================================================
# TIER CONFIGURATION
# =============================================================================

@members_bp.get("/tiers")
def list_tiers_route():
    tiers = membership_service.list_tier_configs()
    return jsonify({"tiers": [t.to_dict() for t in tiers]}), 200


@members_bp.put("/tiers/<tier>")
def upsert_tier_route(tier: str):
    """
    Create or replace a tier's rates.

    Request body:
    {
        "name": "Gold",
        "discount_rate_bps": 500,     (5% off the subtotal)
        "points_rate_bps": 15000,     (1.5 points per currency unit paid)
        "min_spending_cents": 500000,
        "color": "#d4a017",
        "is_active": true
    }
    """
    try:
        data = require_json()
        config = membership_service.upsert_tier_config(
            tier,
            name=data.get("name"),
            discount_rate_bps=data.get("discount_rate_bps", 0),
            points_rate_bps=data.get("points_rate_bps", membership_service.DEFAULT_POINTS_RATE_BPS),
            min_spending_cents=data.get("min_spending_cents", 0),
            color=data.get("color"),
            is_active=data.get("is_active", True),
        )
        return jsonify({"tier": config.to_dict()}), 200

    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to save tier config")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# MEMBERS
# =============================================================================

@members_bp.get("/")
def list_members_route():
    members = membership_service.list_members(
        tier=request.args.get("tier"),
        status=request.args.get("status"),
    )
    return jsonify({"members": [m.to_dict() for m in members]}), 200


@members_bp.post("/")
def create_member_route():
    """Request body: {"customer_id": 1, "tier": "gold", "created_by": "alice"}"""
    try:
        data = require_json()
        member = membership_service.create_member(
            data.get("customer_id"),
            tier=data.get("tier") or "regular",
            created_by=data.get("created_by"),
        )
        return jsonify({"member": member.to_dict()}), 201

    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create member")
        return jsonify({"error": "Internal server error"}), 500


@members_bp.get("/<int:member_id>")
def get_member_route(member_id: int):
    try:
        member = membership_service.get_member(member_id)
        return jsonify({"member": member.to_dict()}), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)


@members_bp.patch("/<int:member_id>/status")
def set_member_status_route(member_id: int):
    """Request body: {"status": "suspended"}"""
    try:
        data = require_json()
        member = membership_service.set_member_status(member_id, data.get("status"))
        return jsonify({"member": member.to_dict()}), 200

    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update member status")
        return jsonify({"error": "Internal server error"}), 500


@members_bp.get("/<int:member_id>/points")
def point_history_route(member_id: int):
    try:
        member = membership_service.get_member(member_id)
    except DOMAIN_ERRORS as e:
        return error_response(e)
    transactions = membership_service.list_point_transactions(member.id)
    return jsonify({
        "member": member.to_dict(),
        "transactions": [tx.to_dict() for tx in transactions],
    }), 200
