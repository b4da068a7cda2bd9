# app/wallet/routes.py
from flask import current_app, jsonify, request
from flask_login import current_user, login_required

from app.auth.decorators import client_ip
from app.errors import LedgerError, ValidationFailed
from app.models.activity import PURCHASE, WITHDRAW
from app.services.connect import (
    bank_info,
    check_requirements,
    complete_requirements,
    configure_wallet,
    fix_requirements,
)
from app.services.payouts import quote_withdrawal, request_withdrawal, summary_amounts
from app.services.rail import RailError
from app.services.wallet import available_balance, recent_money_activities
from app.utils import validated
from . import wallet_bp
from .forms import BankAccountForm, CompleteRequirementsForm, WithdrawForm


def _rail_failure(e: RailError, action: str) -> LedgerError:
    current_app.logger.error("Rail error while trying to %s for user %s: %s", action, current_user.id, e)
    if e.status == 400:
        # The rail rejected what the seller entered; its message is safe to show
        return ValidationFailed(e.message, code=e.code or "rail_rejected")
    return LedgerError(f"Failed to {action}. Please try again later.", code="rail_unavailable", status_code=502)


@wallet_bp.route("", methods=["GET"])
@login_required
def wallet_summary():
    activities = recent_money_activities(current_user.id)
    return jsonify({
        "success": True,
        "availableFunds": float(available_balance(current_user.id)),
        "sales": [a for a in activities if a["type"] == PURCHASE],
        "withdraws": [a for a in activities if a["type"] == WITHDRAW],
    })


@wallet_bp.route("/bank-info", methods=["GET"])
@login_required
def get_bank_info():
    return jsonify({"success": True, **bank_info(current_user)})


@wallet_bp.route("/configure", methods=["POST"])
@login_required
def configure():
    form = validated(BankAccountForm())
    try:
        result = configure_wallet(
            current_user,
            form.routing_number.data,
            form.account_number.data,
            form.account_type.data,
            client_ip=client_ip(),
        )
    except RailError as e:
        raise _rail_failure(e, "configure wallet")
    return jsonify({"success": True, **result})


@wallet_bp.route("/check-requirements", methods=["GET"])
@login_required
def get_requirements():
    try:
        result = check_requirements(current_user, client_ip=client_ip())
    except RailError as e:
        raise _rail_failure(e, "check requirements")
    return jsonify({"success": True, **result})


@wallet_bp.route("/fix-requirements", methods=["POST"])
@login_required
def post_fix_requirements():
    try:
        result = fix_requirements(current_user, client_ip=client_ip())
    except RailError as e:
        raise _rail_failure(e, "fix requirements")
    return jsonify({"success": True, **result})


@wallet_bp.route("/complete-requirements", methods=["POST"])
@login_required
def post_complete_requirements():
    form = validated(CompleteRequirementsForm())
    try:
        result = complete_requirements(current_user, form.ssn_last_4.data, client_ip=client_ip())
    except RailError as e:
        raise _rail_failure(e, "complete requirements")
    return jsonify({"success": True, **result})


@wallet_bp.route("/withdraw/quote", methods=["GET"])
@login_required
def withdraw_quote():
    quote = quote_withdrawal(current_user.id, request.args.get("method", "standard"))
    return jsonify({"success": True, **summary_amounts({
        "amount": quote["amount"],
        "fee": quote["fee"],
        "netAmount": quote["net_amount"],
        "method": quote["method"],
    })})


@wallet_bp.route("/withdraw", methods=["POST"])
@login_required
def withdraw():
    form = validated(WithdrawForm())
    result = request_withdrawal(current_user.id, form.method.data or "standard", client_ip=client_ip())
    return jsonify({
        "success": True,
        "message": "Withdrawal initiated successfully.",
        **summary_amounts(result),
    })
