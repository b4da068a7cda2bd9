# app/models/withdrawal.py
from datetime import datetime

from app.extensions import db

PENDING = "pending"
TRANSFERRED = "transferred"
SETTLED = "settled"
FAILED = "failed"
UNKNOWN = "unknown"
NEEDS_RECONCILIATION = "needs_reconciliation"

FINAL_STATUSES = {SETTLED, FAILED}


class WithdrawalRequest(db.Model):
    """Intent record written before the payout rail is called.

    pending -> transferred -> settled, with exits to failed (nothing moved),
    unknown (transfer outcome ambiguous) and needs_reconciliation (money
    moved, ledger not updated).
    """

    __tablename__ = "withdrawal_requests"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False, index=True)

    # Gross amount moved to the seller (dollars) and the same in cents for the rail
    amount = db.Column(db.Numeric(12, 2), nullable=False)
    amount_cents = db.Column(db.Integer, nullable=False)

    # standard | instant
    method = db.Column(db.String(16), nullable=False, default="standard")
    fee = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    net_amount = db.Column(db.Numeric(12, 2), nullable=False)

    # {"<link_id>": cents} snapshot taken under the payout lock
    allocations = db.Column(db.JSON, nullable=False, default=dict)

    status = db.Column(db.String(24), nullable=False, default=PENDING, index=True)
    note = db.Column(db.String(255), nullable=True)

    stripe_transfer_id = db.Column(db.String(80), nullable=True)
    stripe_payout_id = db.Column(db.String(80), nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
    processed_at = db.Column(db.DateTime, nullable=True)

    user = db.relationship(
        "User",
        backref=db.backref("withdrawal_requests", lazy="dynamic"),
        foreign_keys=[user_id],
    )

    def __repr__(self) -> str:
        return f"<WithdrawalRequest id={self.id} user_id={self.user_id} amount={self.amount} status={self.status}>"

    @property
    def is_final(self) -> bool:
        return self.status in FINAL_STATUSES

    def link_allocations(self) -> list[tuple[int, int]]:
        """(link_id, cents) pairs in a stable order. JSON keys come back as strings."""
        return sorted((int(link_id), int(cents)) for link_id, cents in (self.allocations or {}).items())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "userId": self.user_id,
            "amount": float(self.amount),
            "fee": float(self.fee or 0),
            "netAmount": float(self.net_amount),
            "method": self.method,
            "status": self.status,
            "note": self.note,
            "transferId": self.stripe_transfer_id,
            "payoutId": self.stripe_payout_id,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "processedAt": self.processed_at.isoformat() if self.processed_at else None,
        }
