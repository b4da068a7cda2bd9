# app/services/connect.py
"""
Seller accounts on the payout rail: creation, bank details, and the
requirement remediation that decides whether a withdrawal may proceed.
"""
import re
import time

from flask import current_app

from app.errors import Ineligible, ValidationFailed
from app.extensions import db
from app.services.email import send_wallet_requirements_email
from app.services.rail import RailError, get_rail

# Requirements we satisfy with platform defaults; the seller never sees these
AUTO_FIXABLE = ("business_profile.mcc", "business_profile.url", "tos_acceptance")
# Requirements only the seller can provide
USER_INPUT = ("individual.ssn_last_4",)

SSN_LAST_4 = re.compile(r"^\d{4}$")


def _wallet_url(suffix: str) -> str:
    base = current_app.config.get("BASE_URL", "").rstrip("/")
    return f"{base}/wallet?{suffix}"


def platform_business_profile(current: dict | None = None) -> dict:
    current = current or {}
    return {
        "mcc": current.get("mcc") or current_app.config["PLATFORM_MCC"],
        "url": current_app.config["PLATFORM_URL"],
    }


def platform_tos_acceptance(current: dict | None, client_ip: str | None) -> dict:
    current = current or {}
    return {
        "date": current.get("date") or int(time.time()),
        "ip": current.get("ip") or client_ip or "unknown",
    }


def format_requirement(req: str) -> str:
    return re.sub(r"\b\w", lambda m: m.group(0).upper(), req.replace("_", " "))


def is_auto_fixable(req: str) -> bool:
    return any(key in req for key in AUTO_FIXABLE)


def user_input_requirements(missing: list[str]) -> list[str]:
    return [req for req in missing if any(key in req for key in USER_INPUT)]


def require_onboarding(user) -> None:
    missing = user.missing_onboarding_fields()
    if missing:
        raise ValidationFailed(
            f"Please complete onboarding before configuring your wallet (missing {missing[0]}).",
            code="onboarding_incomplete",
            field=missing[0],
            missing=missing,
        )


def verified_identity(user) -> dict:
    if not user.is_identity_verified or not user.stripe_verification_session_id:
        raise Ineligible(
            "Please complete identity verification before configuring your wallet.",
            code="identity_unverified",
        )
    try:
        verification = get_rail().retrieve_verification(user.stripe_verification_session_id)
    except RailError as e:
        current_app.logger.error("Error retrieving verification session for user %s: %s", user.id, e)
        raise Ineligible(
            "Could not retrieve verification information. Please complete identity verification again.",
            code="identity_unavailable",
        )
    if not verification.get("verified"):
        raise Ineligible(
            "Identity verification is not complete. Please complete verification first.",
            code="identity_unverified",
        )
    return verification


def identity_from_user(user, verification: dict | None = None) -> dict:
    identity = {
        "first_name": user.first_name,
        "last_name": user.last_name,
        "email": user.email,
        "phone": user.phone_number,
        "address": {
            "line1": user.address_line1,
            "line2": user.address_line2,
            "city": user.city,
            "state": user.state,
            "postal_code": user.postal_code,
            "country": user.country,
        },
    }
    if user.date_of_birth:
        identity["dob"] = {
            "day": user.date_of_birth.day,
            "month": user.date_of_birth.month,
            "year": user.date_of_birth.year,
        }
    if verification:
        if verification.get("id_number"):
            identity["id_number"] = verification["id_number"]
        document = {
            "front": verification.get("document_front"),
            "back": verification.get("document_back"),
        }
        if document["front"] or document["back"]:
            identity["verification"] = {"document": document}
    return identity


def configure_wallet(user, routing_number: str, account_number: str, account_type: str, client_ip: str | None = None) -> dict:
    """Create (or refresh) the seller's connected account and attach a new bank account."""
    require_onboarding(user)
    verification = verified_identity(user)

    rail = get_rail()
    identity = identity_from_user(user, verification)

    if not user.stripe_connect_account_id:
        account_ref = rail.create_connected_account(
            identity,
            business_type="company" if account_type == "business" else "individual",
            business_profile=platform_business_profile(),
            tos_acceptance=platform_tos_acceptance(None, client_ip),
            email=user.email,
            country=user.country or "US",
        )
        user.stripe_connect_account_id = account_ref
        db.session.commit()
        current_app.logger.info("Created connected account %s for user %s", account_ref, user.id)
    else:
        status = rail.retrieve_account_requirements(user.stripe_connect_account_id)
        rail.update_connected_account(
            user.stripe_connect_account_id,
            identity=identity,
            business_profile=platform_business_profile(status.get("business_profile")),
            tos_acceptance=platform_tos_acceptance(status.get("tos_acceptance"), client_ip),
        )

    bank = replace_bank_account(user, routing_number, account_number, account_type)

    status = rail.retrieve_account_requirements(user.stripe_connect_account_id)
    needs_verification = status.get("verification_status") in ("unverified", "pending")
    account_link_url = None
    if needs_verification:
        account_link_url = rail.create_account_link(
            user.stripe_connect_account_id,
            refresh_url=_wallet_url("refresh=true"),
            return_url=_wallet_url("success=true"),
        )

    return {
        "connectedAccountId": user.stripe_connect_account_id,
        "externalAccountId": bank["id"],
        "bankName": bank["bank_name"],
        "needsVerification": needs_verification,
        "accountLinkUrl": account_link_url,
    }


def replace_bank_account(user, routing_number: str, account_number: str, account_type: str) -> dict:
    """
    Attach a new default bank account, then remove the previous default.

    The old one is only deleted once the new one is attached, so the account
    always has somewhere to pay out to.
    """
    rail = get_rail()
    account_ref = user.stripe_connect_account_id

    existing = rail.list_external_accounts(account_ref)
    previous_default = next((acc for acc in existing if acc.get("default")), None)

    token = rail.tokenize_bank_account(
        routing_number,
        account_number,
        holder_type="company" if account_type == "business" else "individual",
        country=user.country or "US",
    )
    attached = rail.attach_external_account(account_ref, token["id"], default=True)

    if previous_default and previous_default["id"] != attached["id"]:
        try:
            rail.delete_external_account(account_ref, previous_default["id"])
        except RailError as e:
            current_app.logger.error(
                "Error deleting old default bank account %s on %s: %s",
                previous_default["id"], account_ref, e,
            )

    return {"id": attached["id"], "bank_name": attached.get("bank_name") or token.get("bank_name")}


def bank_info(user) -> dict:
    empty = {"hasBankAccount": False, "bankName": None, "accountType": None, "last4": None}
    if not user.stripe_connect_account_id:
        return empty
    try:
        accounts = get_rail().list_external_accounts(user.stripe_connect_account_id)
    except RailError as e:
        current_app.logger.error("Error fetching bank information for user %s: %s", user.id, e)
        return empty
    if not accounts:
        return empty
    bank = next((acc for acc in accounts if acc.get("default")), accounts[0])
    return {
        "hasBankAccount": True,
        "bankName": bank.get("bank_name"),
        "accountType": bank.get("holder_type"),
        "last4": bank.get("last4"),
    }


def _apply_platform_defaults(user, status: dict, client_ip: str | None) -> dict:
    rail = get_rail()
    rail.update_connected_account(
        user.stripe_connect_account_id,
        business_profile=platform_business_profile(status.get("business_profile")),
        tos_acceptance=platform_tos_acceptance(status.get("tos_acceptance"), client_ip),
    )
    return rail.retrieve_account_requirements(user.stripe_connect_account_id)


def auto_fix_requirements(user, status: dict, client_ip: str | None = None) -> dict:
    """Fill auto-fixable requirements with platform defaults; returns the fresh status."""
    if not any(is_auto_fixable(req) for req in status.get("missing", [])):
        return status
    try:
        return _apply_platform_defaults(user, status, client_ip)
    except RailError as e:
        current_app.logger.error("Error auto-fixing requirements for user %s: %s", user.id, e)
        return status


def check_requirements(user, client_ip: str | None = None) -> dict:
    if not user.stripe_connect_account_id:
        return {"hasRequirements": False, "missingRequirements": [], "allMissingRequirements": [], "payoutsEnabled": False}

    status = get_rail().retrieve_account_requirements(user.stripe_connect_account_id)
    status = auto_fix_requirements(user, status, client_ip)

    missing = status.get("missing", [])
    handleable = user_input_requirements(missing)
    if handleable:
        send_wallet_requirements_email(user, [format_requirement(r) for r in handleable])

    return {
        "hasRequirements": bool(missing),
        "missingRequirements": handleable,
        "allMissingRequirements": missing,
        "payoutsEnabled": status.get("payouts_enabled", False),
    }


def _require_account(user) -> None:
    if not user.stripe_connect_account_id:
        raise Ineligible(
            "No connected account found. Please configure your wallet first.",
            code="no_connected_account",
        )


def fix_requirements(user, client_ip: str | None = None) -> dict:
    _require_account(user)
    status = get_rail().retrieve_account_requirements(user.stripe_connect_account_id)
    status = _apply_platform_defaults(user, status, client_ip)
    missing = status.get("missing", [])
    return {
        "payoutsEnabled": status.get("payouts_enabled", False),
        "userInputRequired": user_input_requirements(missing),
        "allMissingRequirements": missing,
    }


def complete_requirements(user, ssn_last_4: str | None, client_ip: str | None = None) -> dict:
    """Supply the id number (from verification) or the SSN last 4 the seller typed in."""
    ssn_last_4 = (ssn_last_4 or "").strip() or None
    if ssn_last_4 is not None and not SSN_LAST_4.match(ssn_last_4):
        raise ValidationFailed("SSN last 4 must be exactly 4 digits.", field="ssn_last_4")

    _require_account(user)
    rail = get_rail()

    verification = None
    if user.stripe_verification_session_id and user.is_identity_verified:
        try:
            verification = rail.retrieve_verification(user.stripe_verification_session_id)
        except RailError as e:
            current_app.logger.error("Error retrieving verification for user %s: %s", user.id, e)
        if verification and not verification.get("verified"):
            verification = None

    individual = {}
    if verification and verification.get("id_number"):
        individual["id_number"] = verification["id_number"]
    elif ssn_last_4:
        individual["ssn_last_4"] = ssn_last_4
    else:
        raise ValidationFailed(
            "ID number is required. Please provide the last 4 digits of your SSN.",
            code="id_number_required",
            requires_id_number=True,
        )

    if verification and (verification.get("document_front") or verification.get("document_back")):
        individual["verification"] = {
            "document": {"front": verification.get("document_front"), "back": verification.get("document_back")},
        }

    status = rail.retrieve_account_requirements(user.stripe_connect_account_id)
    rail.update_connected_account(
        user.stripe_connect_account_id,
        identity=individual,
        business_profile=platform_business_profile(status.get("business_profile")),
        tos_acceptance=platform_tos_acceptance(status.get("tos_acceptance"), client_ip),
    )

    status = rail.retrieve_account_requirements(user.stripe_connect_account_id)
    return {"payoutsEnabled": status.get("payouts_enabled", False), "allMissingRequirements": status.get("missing", [])}


def ensure_payouts_enabled(user, client_ip: str | None = None) -> dict:
    """
    Raise Ineligible unless the rail says this seller can receive payouts.

    Auto-fixable requirements are filled first; only what is left is reported.
    """
    rail = get_rail()
    account_ref = user.stripe_connect_account_id
    try:
        status = rail.retrieve_account_requirements(account_ref)
    except RailError as e:
        current_app.logger.error("Error retrieving connected account %s: %s", account_ref, e)
        raise Ineligible(
            "Unable to verify connected account. Please reconfigure your wallet.",
            code="account_unavailable",
        )

    if status.get("payouts_enabled"):
        return status

    status = auto_fix_requirements(user, status, client_ip)
    if status.get("payouts_enabled"):
        return status

    missing = status.get("missing", [])
    try:
        has_bank_account = bool(rail.list_external_accounts(account_ref))
    except RailError as e:
        current_app.logger.error("Error checking external accounts on %s: %s", account_ref, e)
        has_bank_account = False

    message = "Your connected account is not ready to receive payouts. "
    if not has_bank_account:
        message = "Please add a bank account in your wallet settings before withdrawing funds."
    elif missing:
        message += "Please complete: " + ", ".join(format_requirement(r) for r in missing)
    elif status.get("disabled_reason"):
        message += f"Account status: {status['disabled_reason']}. Please complete the onboarding process."
    else:
        message += "Please complete the onboarding process in your wallet settings."

    current_app.logger.info(
        "Account %s not payout-enabled: missing=%s disabled_reason=%s has_bank=%s",
        account_ref, missing, status.get("disabled_reason"), has_bank_account,
    )

    account_link_url = None
    try:
        account_link_url = rail.create_account_link(
            account_ref,
            refresh_url=_wallet_url("refresh=true"),
            return_url=_wallet_url("success=true"),
        )
    except RailError as e:
        current_app.logger.error("Error creating account link for %s: %s", account_ref, e)

    raise Ineligible(
        message,
        code="payouts_disabled",
        needsOnboarding=True,
        requirements=missing,
        accountLinkUrl=account_link_url,
        hasBankAccount=has_bank_account,
    )
