from datetime import datetime

from sqlalchemy import event

from app.extensions import db

CLICK = "click"
PURCHASE = "purchase"
WITHDRAW = "withdraw"
ACTIVITY_TYPES = (CLICK, PURCHASE, WITHDRAW)


class ActivityImmutable(RuntimeError):
    pass


class Activity(db.Model):
    """Append-only ledger entry.

    amount is in cents: the base price for a purchase (before the seller's
    share of the fee is taken), the seller-net amount paid out for a withdraw,
    NULL for a click. platform_fee is the seller's fee percent at purchase time.
    """

    __tablename__ = "activities"
    __table_args__ = (
        db.CheckConstraint("type IN ('click', 'purchase', 'withdraw')", name="ck_activity_type"),
        db.CheckConstraint(
            "(type = 'click' AND amount IS NULL AND platform_fee IS NULL)"
            " OR (type = 'purchase' AND amount IS NOT NULL AND platform_fee IS NOT NULL)"
            " OR (type = 'withdraw' AND amount IS NOT NULL AND platform_fee IS NULL)",
            name="ck_activity_amounts",
        ),
        db.Index("ix_activities_link_type", "link_id", "type"),
    )

    id = db.Column(db.Integer, primary_key=True)
    link_id = db.Column(db.Integer, db.ForeignKey("links.id"), nullable=False, index=True)
    type = db.Column(db.String(16), nullable=False)

    amount = db.Column(db.Integer, nullable=True)
    platform_fee = db.Column(db.Integer, nullable=True)

    # Purchases only
    stripe_payment_ref = db.Column(db.String(120), unique=True, nullable=True)
    customer_email = db.Column(db.String(120), nullable=True, index=True)

    # Withdraws only
    withdrawal_id = db.Column(db.Integer, db.ForeignKey("withdrawal_requests.id"), nullable=True, index=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False, index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "linkId": self.link_id,
            "type": self.type,
            "amount": self.amount / 100 if self.amount is not None else None,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self) -> str:
        return f"<Activity id={self.id} link_id={self.link_id} type={self.type} amount={self.amount}>"


@event.listens_for(Activity, "before_update")
def _refuse_update(mapper, connection, target):
    raise ActivityImmutable(f"Activity {target.id} is append-only and cannot be updated")


@event.listens_for(Activity, "before_delete")
def _refuse_delete(mapper, connection, target):
    raise ActivityImmutable(f"Activity {target.id} is append-only and cannot be deleted")
