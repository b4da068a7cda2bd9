# app/services/checkout.py
from flask import current_app

from app.errors import Ineligible, NotFound, ValidationFailed
from app.extensions import db
from app.models import Link
from app.services.activity import record_purchase_once
from app.services.email import send_purchase_link_email, send_purchase_notification_email
from app.services.fees import price_with_buyer_surcharge, to_cents, to_dollars
from app.services.rail import get_rail


def buyer_price_cents(link: Link) -> int:
    return price_with_buyer_surcharge(to_cents(link.price), link.user.fee_percent)


def start_checkout(link: Link, email: str) -> dict:
    """Open a rail checkout for `link`, priced with the buyer's half of the fee."""
    if not link.is_purchasable:
        raise NotFound("Link not found.")
    if link.user.is_frozen:
        raise Ineligible("This link is not available for purchase.", code="seller_frozen")

    fee_percent = link.user.fee_percent
    base_cents = to_cents(link.price)
    total_cents = price_with_buyer_surcharge(base_cents, fee_percent)

    base_url = current_app.config.get("BASE_URL", "").rstrip("/")
    session = get_rail().create_checkout(
        total_cents,
        success_url=f"{base_url}/{link.slug}?session_id={{CHECKOUT_SESSION_ID}}&purchased=true",
        cancel_url=f"{base_url}/{link.slug}",
        metadata={
            "linkId": str(link.id),
            "linkUrl": link.slug,
            "linkName": link.name or link.slug,
            "customerEmail": email,
            "basePriceInCents": str(base_cents),
            "totalPriceInCents": str(total_cents),
            "platformFeePercent": str(fee_percent),
        },
        customer_email=email,
        description=link.name or f"Link {link.slug}",
    )
    return {"sessionId": session["id"], "url": session.get("url"), "amountCents": total_cents}


def record_checkout_purchase(metadata: dict, payment_ref: str, customer_email: str | None = None):
    """
    Record the purchase described by a paid checkout's metadata.

    Returns (activity, created). Notifications go out only the first time.
    """
    try:
        link_id = int(metadata.get("linkId") or 0)
        base_cents = int(metadata.get("basePriceInCents") or 0)
        fee_percent = int(float(metadata.get("platformFeePercent") or current_app.config["DEFAULT_PLATFORM_FEE_PERCENT"]))
    except (TypeError, ValueError):
        raise ValidationFailed("Invalid checkout metadata.", code="invalid_metadata")

    if not link_id or not base_cents:
        raise ValidationFailed("Invalid checkout metadata.", code="invalid_metadata")

    link = db.session.get(Link, link_id)
    if link is None:
        raise NotFound("Link not found.")

    email = metadata.get("customerEmail") or customer_email
    activity, created = record_purchase_once(link.id, base_cents, fee_percent, payment_ref, email)

    if created:
        if email:
            send_purchase_link_email(email, link)
        send_purchase_notification_email(link.user, link, to_dollars(base_cents))

    return activity, created
