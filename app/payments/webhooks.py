from flask import request, current_app, jsonify, abort

from app.errors import ValidationFailed
from app.extensions import db
from app.models import User
from app.services.checkout import record_checkout_purchase
from app.services.email import send_cash_out_email
from app.services.fees import to_dollars
from app.services.rail import RailError, get_rail
from . import payments_bp


def _checkout_completed(obj: dict):
    if obj.get("payment_status") and obj.get("payment_status") != "paid":
        return jsonify({"status": "ignored", "reason": "not_paid"}), 200

    metadata = obj.get("metadata") or {}
    if not metadata.get("linkId") or not metadata.get("basePriceInCents"):
        current_app.logger.error("Checkout %s completed without link metadata", obj.get("id"))
        abort(400, description="Missing checkout metadata")

    details = obj.get("customer_details") or {}
    _, created = record_checkout_purchase(
        metadata,
        obj.get("payment_intent") or obj["id"],
        obj.get("customer_email") or details.get("email"),
    )
    if not created:
        return jsonify({"status": "ignored", "reason": "already_recorded"}), 200
    return jsonify({"status": "ok"}), 200


def _verification_verified(obj: dict):
    user = User.query.filter_by(stripe_verification_session_id=obj.get("id")).first()
    if not user:
        return jsonify({"status": "ignored", "reason": "unknown_session"}), 200

    user.is_identity_verified = True
    db.session.commit()
    current_app.logger.info("Identity verified for user %s", user.id)

    # Push the verified id number to an existing connected account
    if user.stripe_connect_account_id:
        rail = get_rail()
        try:
            verification = rail.retrieve_verification(user.stripe_verification_session_id)
            if verification.get("id_number"):
                rail.update_connected_account(
                    user.stripe_connect_account_id,
                    identity={"id_number": verification["id_number"]},
                )
        except RailError as e:
            current_app.logger.error("Error updating connected account for user %s: %s", user.id, e)

    return jsonify({"status": "ok"}), 200


def _verification_requires_input(obj: dict):
    user = User.query.filter_by(stripe_verification_session_id=obj.get("id")).first()
    if not user:
        return jsonify({"status": "ignored", "reason": "unknown_session"}), 200

    user.is_identity_verified = False
    db.session.commit()
    current_app.logger.info(
        "Verification %s for user %s requires input: %s",
        obj.get("id"), user.id, (obj.get("last_error") or {}).get("reason"),
    )
    return jsonify({"status": "ok"}), 200


def _payout_paid(obj: dict, account_ref: str | None):
    user = User.query.filter_by(stripe_connect_account_id=account_ref).first() if account_ref else None
    if not user:
        return jsonify({"status": "ignored", "reason": "unknown_account"}), 200

    send_cash_out_email(user, to_dollars(obj.get("amount") or 0), obj.get("method") or "standard")
    return jsonify({"status": "ok"}), 200


@payments_bp.route("/webhook/stripe", methods=["POST"])
def stripe_webhook():
    signature = request.headers.get("Stripe-Signature", "")
    raw_body = request.get_data(cache=False, as_text=False)

    try:
        event = get_rail().construct_event(raw_body, signature)
    except RailError as e:
        current_app.logger.warning("Rejected webhook: %s", e)
        abort(400, description="Invalid webhook signature")

    event_type = (event.get("type") or "").strip()
    obj = (event.get("data") or {}).get("object") or {}

    # ---------------------------
    # PURCHASES
    # ---------------------------
    if event_type == "checkout.session.completed":
        try:
            return _checkout_completed(obj)
        except ValidationFailed as e:
            current_app.logger.error("Checkout %s could not be recorded: %s", obj.get("id"), e)
            abort(400, description=e.message)

    # ---------------------------
    # IDENTITY
    # ---------------------------
    if event_type == "identity.verification_session.verified":
        return _verification_verified(obj)

    if event_type == "identity.verification_session.requires_input":
        return _verification_requires_input(obj)

    # ---------------------------
    # CONNECTED ACCOUNTS / PAYOUTS
    # ---------------------------
    if event_type == "account.updated":
        current_app.logger.info(
            "Account %s updated: payouts_enabled=%s",
            obj.get("id"), obj.get("payouts_enabled"),
        )
        return jsonify({"status": "ok"}), 200

    if event_type == "payout.paid":
        return _payout_paid(obj, event.get("account"))

    if event_type == "payout.failed":
        current_app.logger.warning(
            "Payout %s failed on account %s: %s",
            obj.get("id"), event.get("account"), obj.get("failure_message"),
        )
        return jsonify({"status": "ok"}), 200

    return jsonify({"status": "ignored", "reason": "unhandled_event"}), 200
