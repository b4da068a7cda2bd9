# app/services/payouts.py
"""
Withdrawal settlement.

Stages run strictly in order and no database transaction is held open across
a rail call:

  1. eligibility (frozen, identity, connected account, per-user lock, balance)
  2. rail readiness (payouts enabled, after auto-fixing what we can)
  3. transfer platform -> connected account     (failure aborts, nothing moved)
  4. payout connected account -> bank            (failure is logged, not fatal)
  5. ledger settlement in one transaction        (failure is critical)

A successful transfer is the point of no return: from there on the ledger
must end up settled, either here or through admin reconciliation.
"""
import secrets
from datetime import datetime
from decimal import Decimal

from flask import current_app
from sqlalchemy import and_

from app.errors import Ineligible, NotFound, SettlementFailed, ValidationFailed, WithdrawalFailed
from app.extensions import db
from app.models import Activity, Link, User, WithdrawalRequest
from app.models import withdrawal as status
from app.models.activity import WITHDRAW
from app.services.connect import ensure_payouts_enabled
from app.services.fees import payout_quote, to_dollars
from app.services.rail import RailError, RailTimeout, get_rail
from app.services.wallet import withdrawable_allocations

PAYOUT_METHODS = ("standard", "instant")


def check_eligibility(user) -> None:
    if user.is_frozen:
        raise Ineligible("Your account is frozen. Please contact support.", code="account_frozen")

    if not user.is_identity_verified:
        raise Ineligible(
            "Please complete identity verification before withdrawing funds.",
            code="identity_unverified",
        )

    if not user.stripe_connect_account_id:
        raise Ineligible(
            "Please configure your wallet before withdrawing funds.",
            code="no_connected_account",
        )


def acquire_payout_lock(user_id: int) -> str:
    """Claim the user's payout lock with a conditional update; commits immediately."""
    token = secrets.token_hex(16)
    try:
        claimed = (
            db.session.query(User)
            .filter(User.id == user_id, User.payout_lock_token.is_(None))
            .update(
                {User.payout_lock_token: token, User.payout_locked_at: datetime.utcnow()},
                synchronize_session=False,
            )
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    if claimed != 1:
        raise Ineligible(
            "A withdrawal is already in progress. Please wait for it to finish.",
            code="withdrawal_in_progress",
        )
    return token


def release_payout_lock(user_id: int, token: str | None = None) -> None:
    criteria = [User.id == user_id]
    if token is not None:
        criteria.append(User.payout_lock_token == token)
    try:
        db.session.query(User).filter(and_(*criteria)).update(
            {User.payout_lock_token: None, User.payout_locked_at: None},
            synchronize_session=False,
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise


def _settle_link(wr: WithdrawalRequest, link_id: int, cents: int) -> None:
    """
    Subtracts the snapshotted allocation rather than setting totalEarnings to 0.
    With no sale between snapshot and settlement the result is the same zero;
    a sale that lands while the transfer is in flight was not transferred, so
    zeroing would silently drop it from the seller's balance.
    """
    db.session.add(Activity(link_id=link_id, type=WITHDRAW, amount=cents, withdrawal_id=wr.id))
    updated = (
        db.session.query(Link)
        .filter(Link.id == link_id)
        .update(
            {Link.total_earnings: Link.total_earnings - to_dollars(cents)},
            synchronize_session=False,
        )
    )
    if updated != 1:
        raise RuntimeError(f"link {link_id} vanished during settlement of withdrawal {wr.id}")


def settle_withdrawal(wr: WithdrawalRequest) -> None:
    """Write one withdraw activity per link and take the amounts off, all or nothing."""
    try:
        for link_id, cents in wr.link_allocations():
            _settle_link(wr, link_id, cents)
        wr.status = status.SETTLED
        wr.processed_at = datetime.utcnow()
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise


def _mark(wr: WithdrawalRequest, new_status: str, note: str | None = None) -> None:
    wr.status = new_status
    if note:
        wr.note = note[:250]
    if new_status in status.FINAL_STATUSES:
        wr.processed_at = datetime.utcnow()
    db.session.commit()


def flag_for_reconciliation(withdrawal_id: int, transfer_id: str, note: str) -> None:
    """Record a moved-but-unsettled withdrawal in its own transaction."""
    try:
        db.session.query(WithdrawalRequest).filter(WithdrawalRequest.id == withdrawal_id).update(
            {
                WithdrawalRequest.status: status.NEEDS_RECONCILIATION,
                WithdrawalRequest.stripe_transfer_id: transfer_id,
                WithdrawalRequest.note: note[:250],
            },
            synchronize_session=False,
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        current_app.logger.critical(
            "Could not flag withdrawal %s (transfer %s) for reconciliation", withdrawal_id, transfer_id, exc_info=True,
        )


def quote_withdrawal(user_id: int, method: str = "standard") -> dict:
    if method not in PAYOUT_METHODS:
        raise ValidationFailed("Invalid payout method. Must be 'instant' or 'standard'.", field="method")
    allocations = withdrawable_allocations(user_id)
    return payout_quote(to_dollars(sum(allocations.values())), method)


def request_withdrawal(user_id: int, method: str = "standard", client_ip: str | None = None) -> dict:
    """Withdraw the user's whole available balance. Returns a summary of the payout."""
    method = method or "standard"
    if method not in PAYOUT_METHODS:
        raise ValidationFailed("Invalid payout method. Must be 'instant' or 'standard'.", field="method")

    user = db.session.get(User, user_id)
    if user is None:
        raise NotFound("User not found.")

    check_eligibility(user)
    token = acquire_payout_lock(user.id)

    # --- Under the payout lock, before any money moves ---
    try:
        allocations = withdrawable_allocations(user.id)
        amount_cents = sum(allocations.values())
        if amount_cents <= 0:
            raise Ineligible("No funds available to withdraw.", code="no_funds")

        quote = payout_quote(to_dollars(amount_cents), method)
        if quote["net_amount"] <= 0:
            raise Ineligible(
                f"Your balance does not cover the ${quote['fee']} instant payout fee. Use a standard payout instead.",
                code="below_instant_fee",
            )

        ensure_payouts_enabled(user, client_ip)

        wr = WithdrawalRequest(
            user_id=user.id,
            amount=quote["amount"],
            amount_cents=amount_cents,
            method=method,
            fee=quote["fee"],
            net_amount=quote["net_amount"],
            allocations={str(link_id): cents for link_id, cents in allocations.items()},
            status=status.PENDING,
        )
        db.session.add(wr)
        db.session.commit()
    except Exception:
        db.session.rollback()
        release_payout_lock(user.id, token)
        raise

    wr_id = wr.id
    rail = get_rail()
    account_ref = user.stripe_connect_account_id
    metadata = {"userId": user.id, "userEmail": user.email or "", "withdrawalId": wr.id, "payoutMethod": method}

    # --- Transfer: platform -> connected account ---
    try:
        transfer_id = rail.create_transfer(
            account_ref, amount_cents, metadata, idempotency_key=f"withdrawal-{wr.id}-transfer",
        )
    except RailTimeout as e:
        # Outcome unknown: keep the lock so nothing else drains this balance
        current_app.logger.critical(
            "Transfer for withdrawal %s (user %s, %s cents) timed out; state unknown, manual reconciliation required: %s",
            wr.id, user.id, amount_cents, e,
        )
        _mark(wr, status.UNKNOWN, f"transfer outcome unknown: {e}")
        raise WithdrawalFailed(code="transfer_unknown", withdrawalId=wr.id)
    except RailError as e:
        current_app.logger.error("Error creating transfer for withdrawal %s: %s", wr.id, e)
        _mark(wr, status.FAILED, f"transfer failed: {e}")
        release_payout_lock(user.id, token)
        raise WithdrawalFailed(code="transfer_failed", withdrawalId=wr.id)

    # --- Money has moved. Any failure from here on needs reconciliation ---
    try:
        wr.stripe_transfer_id = transfer_id
        _mark(wr, status.TRANSFERRED)

        # Payout: connected account -> bank. Failure does not undo the transfer
        try:
            wr.stripe_payout_id = rail.create_payout(
                account_ref,
                amount_cents,
                method,
                {"userId": user.id, "withdrawalId": wr.id, "transferId": transfer_id},
                idempotency_key=f"withdrawal-{wr.id}-payout",
            )
        except RailError as e:
            current_app.logger.error(
                "Transfer %s succeeded but payout creation failed for withdrawal %s (user %s): %s",
                transfer_id, wr.id, user.id, e,
            )
            wr.note = f"payout failed after transfer: {e}"[:250]
        db.session.commit()

        settle_withdrawal(wr)
    except Exception as e:
        db.session.rollback()
        current_app.logger.critical(
            "LEDGER NOT SETTLED: transfer %s moved %s cents for withdrawal %s (user %s) but settlement failed: %s",
            transfer_id, amount_cents, wr_id, user_id, e,
            exc_info=True,
        )
        flag_for_reconciliation(wr_id, transfer_id, f"settlement failed: {e}")
        raise SettlementFailed(withdrawal_id=wr_id)

    release_payout_lock(user_id, token)

    current_app.logger.info(
        "Withdrawal %s settled: user=%s amount=%s method=%s links=%s",
        wr.id, user.id, wr.amount, method, len(allocations),
    )

    return {
        "withdrawalId": wr.id,
        "transferId": transfer_id,
        "payoutId": wr.stripe_payout_id,
        "amount": quote["amount"],
        "fee": quote["fee"],
        "netAmount": quote["net_amount"],
        "method": method,
    }


# Admin resolution of withdrawals that did not reach a final state
RESOLVE_TRANSITIONS = {
    status.PENDING: {"settle", "fail"},
    status.UNKNOWN: {"settle", "fail"},
    status.TRANSFERRED: {"settle"},
    status.NEEDS_RECONCILIATION: {"settle"},
}


def resolve_withdrawal(withdrawal_id: int, action: str, transfer_id: str | None = None, note: str | None = None) -> WithdrawalRequest:
    """
    settle: the transfer is confirmed on the rail, apply the ledger settlement.
    fail:   nothing was moved, close the request.
    Either way the user's payout lock is released.
    """
    wr = (
        db.session.query(WithdrawalRequest)
        .filter(WithdrawalRequest.id == withdrawal_id)
        .with_for_update()
        .one_or_none()
    )
    if wr is None:
        db.session.rollback()
        raise NotFound("Withdrawal not found.")

    if wr.is_final:
        db.session.rollback()
        raise ValidationFailed("This withdrawal is already final and cannot be changed.", code="already_final")

    allowed = RESOLVE_TRANSITIONS.get(wr.status, set())
    if action not in allowed:
        db.session.rollback()
        raise ValidationFailed(f"Invalid resolution: {wr.status} -> {action}", code="invalid_transition")

    if action == "settle":
        transfer_id = transfer_id or wr.stripe_transfer_id
        if not transfer_id:
            db.session.rollback()
            raise ValidationFailed("A confirmed transfer id is required to settle.", field="transfer_id")
        wr.stripe_transfer_id = transfer_id
        if note:
            wr.note = note[:250]
        settle_withdrawal(wr)
    else:
        _mark(wr, status.FAILED, note or "closed by admin")

    release_payout_lock(wr.user_id)
    current_app.logger.info("Withdrawal %s resolved with %s -> %s", wr.id, action, wr.status)
    return wr


def clear_payout_lock(user_id: int) -> dict:
    """
    Release a payout lock left behind with no withdrawal to resolve, e.g. a
    worker that died between claiming the lock and writing the request.
    Refused while the user has an open withdrawal; resolve that instead.
    """
    user = db.session.get(User, user_id)
    if user is None:
        raise NotFound("User not found.")

    open_wr = (
        WithdrawalRequest.query
        .filter(
            WithdrawalRequest.user_id == user_id,
            WithdrawalRequest.status.notin_(status.FINAL_STATUSES),
        )
        .order_by(WithdrawalRequest.id.desc())
        .first()
    )
    if open_wr is not None:
        raise ValidationFailed(
            "This user has an open withdrawal. Resolve it instead of clearing the lock.",
            code="withdrawal_open",
            withdrawalId=open_wr.id,
        )

    locked_at = user.payout_locked_at
    was_locked = user.payout_lock_token is not None
    release_payout_lock(user_id)
    if was_locked:
        current_app.logger.warning("Cleared payout lock for user %s held since %s", user_id, locked_at)
    return {"userId": user_id, "wasLocked": was_locked, "lockedAt": locked_at.isoformat() if locked_at else None}


def summary_amounts(result: dict) -> dict:
    """Decimal -> float for JSON responses."""
    return {k: float(v) if isinstance(v, Decimal) else v for k, v in result.items()}
