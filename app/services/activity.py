# app/services/activity.py
from decimal import Decimal

from flask import current_app
from sqlalchemy.exc import IntegrityError

from app.errors import NotFound, ValidationFailed
from app.extensions import db
from app.models import Activity, Link
from app.models.activity import CLICK, PURCHASE, WITHDRAW
from app.services.fees import seller_net_earnings, to_dollars


def _bump_link(link_id: int, values: dict) -> None:
    # Increment in SQL so concurrent writers never lose an update
    updated = (
        db.session.query(Link)
        .filter(Link.id == link_id)
        .update(values, synchronize_session=False)
    )
    if updated != 1:
        raise NotFound("Link not found.")


def record_click(link_id: int) -> Activity:
    """Append a click and bump the link's click counter in one transaction."""
    try:
        _bump_link(link_id, {Link.total_clicks: Link.total_clicks + 1})
        activity = Activity(link_id=link_id, type=CLICK)
        db.session.add(activity)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    return activity


def record_purchase(
    link_id: int,
    base_cents: int,
    fee_percent: int,
    payment_ref: str | None,
    customer_email: str | None = None,
) -> Activity:
    """
    Append a purchase and credit the seller, atomically.

    The activity stores the base price and the fee percent in force now; the
    link is credited with the seller-net amount derived from them.
    """
    if base_cents is None or int(base_cents) <= 0:
        raise ValidationFailed("Purchase amount must be positive.")
    if fee_percent is None or not 0 <= int(fee_percent) <= 100:
        raise ValidationFailed("Platform fee must be between 0 and 100.")

    base_cents = int(base_cents)
    fee_percent = int(fee_percent)
    net = to_dollars(seller_net_earnings(base_cents, fee_percent))

    try:
        _bump_link(
            link_id,
            {
                Link.total_sales: Link.total_sales + 1,
                Link.total_earnings: Link.total_earnings + net,
            },
        )
        activity = Activity(
            link_id=link_id,
            type=PURCHASE,
            amount=base_cents,
            platform_fee=fee_percent,
            stripe_payment_ref=payment_ref,
            customer_email=(customer_email or "").strip().lower() or None,
        )
        db.session.add(activity)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    current_app.logger.info(
        "Purchase recorded link=%s base_cents=%s fee=%s%% seller_net=%s ref=%s",
        link_id, base_cents, fee_percent, net, payment_ref,
    )
    return activity


def record_purchase_once(
    link_id: int,
    base_cents: int,
    fee_percent: int,
    payment_ref: str,
    customer_email: str | None = None,
) -> tuple[Activity, bool]:
    """
    Record a purchase unless one already exists for `payment_ref`.

    Returns (activity, created). Webhook redelivery and the buyer's own
    confirmation both land here, so the rail reference is the dedupe key.
    """
    if not payment_ref:
        raise ValidationFailed("Missing payment reference.")

    existing = Activity.query.filter_by(stripe_payment_ref=payment_ref).first()
    if existing:
        return existing, False

    try:
        return record_purchase(link_id, base_cents, fee_percent, payment_ref, customer_email), True
    except IntegrityError:
        # Lost a race with another delivery of the same payment
        existing = Activity.query.filter_by(stripe_payment_ref=payment_ref).first()
        if existing is None:
            raise
        return existing, False


def recompute_link_totals(link_id: int) -> dict:
    """
    Re-derive a link's cached counters from its activity history and overwrite them.

    earnings = seller-net of every purchase minus every withdraw, in cents,
    which is what the incremental path produces.
    """
    try:
        link = (
            db.session.query(Link)
            .filter(Link.id == link_id)
            .with_for_update()
            .one_or_none()
        )
        if link is None:
            raise NotFound("Link not found.")

        clicks = sales = earned_cents = 0
        for activity in Activity.query.filter_by(link_id=link_id).order_by(Activity.id):
            if activity.type == CLICK:
                clicks += 1
            elif activity.type == PURCHASE and activity.amount is not None:
                sales += 1
                earned_cents += seller_net_earnings(activity.amount, activity.platform_fee)
            elif activity.type == WITHDRAW and activity.amount is not None:
                earned_cents -= activity.amount

        before = {
            "clicks": link.total_clicks,
            "sales": link.total_sales,
            "earnings": Decimal(str(link.total_earnings or 0)).quantize(Decimal("0.01")),
        }
        after = {"clicks": clicks, "sales": sales, "earnings": to_dollars(earned_cents)}

        link.total_clicks = clicks
        link.total_sales = sales
        link.total_earnings = after["earnings"]
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    drift = before != after
    if drift:
        current_app.logger.warning("Link %s totals drifted: cached=%s derived=%s", link_id, before, after)

    return {"linkId": link_id, "before": before, "after": after, "drift": drift}
