from decimal import Decimal, ROUND_HALF_UP

from sqlalchemy import func

from app.extensions import db
from app.models import Activity, Link
from app.models.activity import PURCHASE, WITHDRAW
from app.services.fees import to_cents

Q = Decimal("0.01")


def available_balance(user_id: int) -> Decimal:
    """Sum of total_earnings over every link the user owns, soft-deleted ones included."""
    total = db.session.query(
        func.coalesce(func.sum(Link.total_earnings), 0)
    ).filter(
        Link.user_id == user_id
    ).scalar()

    return Decimal(str(total or 0)).quantize(Q, rounding=ROUND_HALF_UP)


def withdrawable_allocations(user_id: int) -> dict[int, int]:
    """{link_id: cents} for every link of the user with a positive balance."""
    rows = (
        db.session.query(Link.id, Link.total_earnings)
        .filter(Link.user_id == user_id, Link.total_earnings > 0)
        .order_by(Link.id)
        .all()
    )
    allocations = {}
    for link_id, earnings in rows:
        cents = to_cents(earnings)
        if cents > 0:
            allocations[link_id] = cents
    return allocations


def recent_money_activities(user_id: int, limit: int = 50) -> list[dict]:
    rows = (
        db.session.query(Activity, Link)
        .join(Link, Activity.link_id == Link.id)
        .filter(Link.user_id == user_id, Activity.type.in_([PURCHASE, WITHDRAW]))
        .order_by(Activity.created_at.desc(), Activity.id.desc())
        .limit(limit)
        .all()
    )
    out = []
    for activity, link in rows:
        item = activity.to_dict()
        item["linkSlug"] = link.slug
        item["linkName"] = link.name or link.slug
        out.append(item)
    return out
