# app/admin/withdrawals.py
from flask import jsonify, request, current_app
from flask_login import login_required, current_user

from app.auth.decorators import admin_required
from app.errors import LedgerError, SettlementFailed
from app.models.withdrawal import FINAL_STATUSES, WithdrawalRequest
from app.services.payouts import resolve_withdrawal
from app.utils import validated

from . import admin_bp
from .forms import ResolveWithdrawalForm


@admin_bp.route("/withdrawals", methods=["GET"])
@login_required
@admin_required
def withdrawals():
    query = WithdrawalRequest.query
    wanted = (request.args.get("status") or "").strip().lower()
    if wanted == "open":
        query = query.filter(WithdrawalRequest.status.notin_(FINAL_STATUSES))
    elif wanted:
        query = query.filter(WithdrawalRequest.status == wanted)

    rows = (
        query
        .order_by(WithdrawalRequest.created_at.desc())
        .limit(200)
        .all()
    )
    return jsonify({"success": True, "withdrawals": [wr.to_dict() for wr in rows]})


@admin_bp.route("/withdrawals/<int:withdrawal_id>/resolve", methods=["POST"])
@login_required
@admin_required
def resolve(withdrawal_id: int):
    form = validated(ResolveWithdrawalForm())
    action = form.action.data

    try:
        wr = resolve_withdrawal(
            withdrawal_id,
            action,
            transfer_id=(form.transfer_id.data or "").strip() or None,
            note=(form.note.data or "").strip() or None,
        )
    except LedgerError:
        raise
    except Exception as e:
        if action != "settle":
            raise
        current_app.logger.critical(
            "Admin %s could not settle withdrawal %s: %s", current_user.id, withdrawal_id, e, exc_info=True,
        )
        raise SettlementFailed(withdrawal_id=withdrawal_id)

    current_app.logger.info(f"Admin {current_user.id} resolved withdrawal {wr.id} -> {wr.status}")
    return jsonify({"success": True, "withdrawal": wr.to_dict()})
