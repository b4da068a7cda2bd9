# app/admin/routes.py
from flask import jsonify, request, current_app
from flask_login import login_required, current_user

from app.auth.decorators import admin_required
from app.errors import NotFound
from app.extensions import db
from app.models import Link, User
from app.services.activity import recompute_link_totals
from app.services.payouts import clear_payout_lock
from app.utils import validated

from . import admin_bp
from .forms import PlatformFeeForm


def _user_or_404(user_id: int) -> User:
    user = db.session.get(User, user_id)
    if user is None:
        raise NotFound("User not found.")
    return user


@admin_bp.route("/links/<int:link_id>/recompute", methods=["POST"])
@login_required
@admin_required
def recompute_link(link_id: int):
    result = recompute_link_totals(link_id)
    link = db.session.get(Link, link_id)
    return jsonify({
        "success": True,
        "drift": result["drift"],
        "before": {**result["before"], "earnings": float(result["before"]["earnings"])},
        "link": link.to_dict(),
    })


@admin_bp.route("/users/<int:user_id>/platform-fee", methods=["POST"])
@login_required
@admin_required
def set_platform_fee(user_id: int):
    user = _user_or_404(user_id)

    body = request.get_json(silent=True) or {}
    if body.get("platform_fee") is None:
        # Back to the platform default
        user.platform_fee = None
    else:
        user.platform_fee = validated(PlatformFeeForm()).platform_fee.data

    db.session.commit()
    current_app.logger.info(f"Admin {current_user.id} set platform fee for user {user.id} -> {user.platform_fee}")
    return jsonify({"success": True, "userId": user.id, "platformFee": user.platform_fee, "effectiveFee": user.fee_percent})


@admin_bp.route("/users/<int:user_id>/freeze", methods=["POST"])
@login_required
@admin_required
def freeze_user(user_id: int):
    user = _user_or_404(user_id)
    user.is_frozen = True
    db.session.commit()
    current_app.logger.warning(f"Admin {current_user.id} froze user {user.id}")
    return jsonify({"success": True, "userId": user.id, "isFrozen": True})


@admin_bp.route("/users/<int:user_id>/unfreeze", methods=["POST"])
@login_required
@admin_required
def unfreeze_user(user_id: int):
    user = _user_or_404(user_id)
    user.is_frozen = False
    db.session.commit()
    current_app.logger.info(f"Admin {current_user.id} unfroze user {user.id}")
    return jsonify({"success": True, "userId": user.id, "isFrozen": False})


@admin_bp.route("/users/<int:user_id>/payout-lock/clear", methods=["POST"])
@login_required
@admin_required
def clear_user_payout_lock(user_id: int):
    result = clear_payout_lock(user_id)
    current_app.logger.info(f"Admin {current_user.id} cleared payout lock for user {user_id}")
    return jsonify({"success": True, **result})
