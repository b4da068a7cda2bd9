from datetime import datetime
from decimal import Decimal

from app.extensions import db


class Link(db.Model):
    __tablename__ = "links"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False, index=True)

    slug = db.Column(db.String(64), unique=True, nullable=False, index=True)
    name = db.Column(db.String(120), nullable=True)
    price = db.Column(db.Numeric(10, 2), nullable=False)

    # Materialized from the activity log. Only services.activity and
    # services.payouts write these.
    total_earnings = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    total_clicks = db.Column(db.Integer, nullable=False, default=0)
    total_sales = db.Column(db.Integer, nullable=False, default=0)

    is_deleted = db.Column(db.Boolean, default=False, nullable=False)
    is_disabled = db.Column(db.Boolean, default=False, nullable=False)
    is_archived = db.Column(db.Boolean, default=False, nullable=False)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    activities = db.relationship("Activity", backref="link", lazy="dynamic")

    @property
    def is_purchasable(self) -> bool:
        return not (self.is_deleted or self.is_disabled or self.is_archived)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "slug": self.slug,
            "name": self.name,
            "price": float(self.price),
            "totalEarnings": float(self.total_earnings or 0),
            "totalClicks": self.total_clicks,
            "totalSales": self.total_sales,
            "isDeleted": self.is_deleted,
            "isDisabled": self.is_disabled,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self) -> str:
        return f"<Link id={self.id} slug={self.slug} earnings={self.total_earnings}>"
