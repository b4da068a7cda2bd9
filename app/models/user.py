from datetime import datetime

from flask import current_app
from flask_login import UserMixin

from app.extensions import db


class User(UserMixin, db.Model):
    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(120), unique=True, nullable=False)
    is_admin = db.Column(db.Boolean, default=False, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    # Onboarding (required before a connected account can be created)
    first_name = db.Column(db.String(80))
    last_name = db.Column(db.String(80))
    date_of_birth = db.Column(db.Date)
    phone_number = db.Column(db.String(32))
    address_line1 = db.Column(db.String(200))
    address_line2 = db.Column(db.String(200))
    city = db.Column(db.String(100))
    state = db.Column(db.String(100))
    postal_code = db.Column(db.String(20))
    country = db.Column(db.String(2), default="US")

    # Percent taken per sale, split between buyer and seller. NULL = platform default.
    platform_fee = db.Column(db.Integer, nullable=True)

    # Payout rail
    stripe_connect_account_id = db.Column(db.String(80), unique=True, nullable=True)
    stripe_verification_session_id = db.Column(db.String(80), index=True, nullable=True)
    is_identity_verified = db.Column(db.Boolean, default=False, nullable=False)

    # Frozen sellers can neither sell nor withdraw
    is_frozen = db.Column(db.Boolean, default=False, nullable=False)

    # Held for the lifetime of one withdrawal; see services.payouts
    payout_lock_token = db.Column(db.String(64), nullable=True)
    payout_locked_at = db.Column(db.DateTime, nullable=True)

    # Notification opt-ins
    email_notification_link_views = db.Column(db.Boolean, default=False, nullable=False)
    email_notification_link_purchases = db.Column(db.Boolean, default=True, nullable=False)
    email_notification_cash_out = db.Column(db.Boolean, default=True, nullable=False)

    links = db.relationship("Link", backref="user", lazy="dynamic")

    ONBOARDING_FIELDS = (
        "first_name",
        "last_name",
        "date_of_birth",
        "phone_number",
        "address_line1",
        "city",
        "state",
        "postal_code",
        "country",
    )

    @property
    def fee_percent(self) -> int:
        if self.platform_fee is None:
            return int(current_app.config.get("DEFAULT_PLATFORM_FEE_PERCENT", 20))
        return int(self.platform_fee)

    def missing_onboarding_fields(self) -> list[str]:
        return [name for name in self.ONBOARDING_FIELDS if not getattr(self, name)]

    def __repr__(self) -> str:
        return f"<User id={self.id} email={self.email}>"
