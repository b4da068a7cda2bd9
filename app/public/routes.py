# app/public/routes.py
from flask import current_app, jsonify, request, session

from app.errors import Forbidden, LedgerError, NotFound, ValidationFailed
from app.models import Activity, Link
from app.models.activity import PURCHASE
from app.services.activity import record_click
from app.services.checkout import buyer_price_cents, record_checkout_purchase, start_checkout
from app.services.email import send_link_view_email
from app.services.fees import to_dollars
from app.services.rail import RailError, get_rail
from app.utils import validated
from . import public_bp
from .forms import CheckoutForm

VIEWED_KEY = "viewed_links"
PURCHASED_KEY = "purchased_links"


def _public_link(slug: str) -> Link:
    link = Link.query.filter_by(slug=slug.lower()).first()
    if link is None or link.is_deleted:
        raise NotFound("Link not found.")
    return link


def _remember(key: str, link_id: int) -> bool:
    """Add link_id to a session list; False if it was already there."""
    seen = session.get(key, [])
    if link_id in seen:
        return False
    session[key] = seen + [link_id]
    return True


def _public_dict(link: Link) -> dict:
    return {
        "slug": link.slug,
        "name": link.name,
        "price": float(to_dollars(buyer_price_cents(link))),
        "available": link.is_purchasable and not link.user.is_frozen,
        "purchased": link.id in session.get(PURCHASED_KEY, []),
    }


@public_bp.route("/<slug>", methods=["GET"])
def view_link(slug: str):
    link = _public_link(slug)

    # One click per visitor session
    if _remember(VIEWED_KEY, link.id):
        record_click(link.id)
        send_link_view_email(link.user, link)

    return jsonify({"success": True, "link": _public_dict(link)})


@public_bp.route("/<slug>/checkout", methods=["POST"])
def checkout(slug: str):
    link = _public_link(slug)
    form = validated(CheckoutForm())
    try:
        result = start_checkout(link, form.email.data.strip().lower())
    except RailError as e:
        current_app.logger.error("Error creating checkout for link %s: %s", link.id, e)
        raise LedgerError("Failed to start checkout.", code="rail_unavailable", status_code=502)
    return jsonify({"success": True, **result})


@public_bp.route("/<slug>/purchase", methods=["GET"])
def confirm_purchase(slug: str):
    link = _public_link(slug)
    session_ref = (request.args.get("session_id") or "").strip()
    if not session_ref:
        raise ValidationFailed("Missing session_id.", field="session_id")

    try:
        checkout_session = get_rail().retrieve_checkout(session_ref)
    except RailError as e:
        current_app.logger.warning("Could not retrieve checkout %s: %s", session_ref, e)
        raise ValidationFailed("Invalid checkout session.", code="invalid_session")

    if not checkout_session.get("paid"):
        raise ValidationFailed("Payment not completed.", code="payment_incomplete")

    metadata = checkout_session.get("metadata") or {}
    if metadata.get("linkId") != str(link.id):
        raise Forbidden("This payment is for a different link.")

    record_checkout_purchase(
        metadata,
        checkout_session.get("payment_ref") or checkout_session["id"],
        checkout_session.get("customer_email"),
    )
    _remember(PURCHASED_KEY, link.id)
    return jsonify({"success": True, "hasAccess": True, "link": _public_dict(link)})


@public_bp.route("/<slug>/lookup", methods=["GET"])
def lookup_purchase(slug: str):
    """Re-grant access on a new device from the email used at checkout."""
    link = _public_link(slug)
    email = (request.args.get("email") or "").strip().lower()
    if not email:
        raise ValidationFailed("Missing email.", field="email")

    activity = (
        Activity.query
        .filter_by(link_id=link.id, type=PURCHASE, customer_email=email)
        .order_by(Activity.created_at.desc(), Activity.id.desc())
        .first()
    )
    if activity is None or not activity.stripe_payment_ref:
        return jsonify({"success": True, "hasAccess": False})

    try:
        payment = get_rail().retrieve_payment(activity.stripe_payment_ref)
    except RailError as e:
        current_app.logger.error("Error verifying payment %s: %s", activity.stripe_payment_ref, e)
        raise LedgerError("Failed to verify purchase.", code="rail_unavailable", status_code=502)

    if not payment.get("succeeded"):
        return jsonify({"success": True, "hasAccess": False})

    _remember(PURCHASED_KEY, link.id)
    return jsonify({"success": True, "hasAccess": True})
