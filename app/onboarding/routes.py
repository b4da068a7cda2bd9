# app/onboarding/routes.py
from flask import current_app, jsonify
from flask_login import current_user, login_required

from app.errors import LedgerError
from app.extensions import db
from app.services.rail import RailError, get_rail
from app.utils import validated
from . import onboarding_bp
from .forms import OnboardingForm


def _profile(user) -> dict:
    return {
        "firstName": user.first_name,
        "lastName": user.last_name,
        "dateOfBirth": user.date_of_birth.isoformat() if user.date_of_birth else None,
        "phoneNumber": user.phone_number,
        "addressLine1": user.address_line1,
        "addressLine2": user.address_line2,
        "city": user.city,
        "state": user.state,
        "postalCode": user.postal_code,
        "country": user.country,
        "isIdentityVerified": user.is_identity_verified,
        "missingFields": user.missing_onboarding_fields(),
    }


@onboarding_bp.route("", methods=["GET"])
@login_required
def get_onboarding():
    return jsonify({"success": True, "profile": _profile(current_user)})


@onboarding_bp.route("", methods=["POST"])
@login_required
def update_onboarding():
    form = validated(OnboardingForm())

    # Partial update: only fields present in the request are touched
    for name in current_user.ONBOARDING_FIELDS + ("address_line2",):
        field = getattr(form, name)
        if not field.raw_data:
            continue
        value = field.data
        if isinstance(value, str):
            value = value.strip() or None
            if name == "country" and value:
                value = value.upper()
        setattr(current_user, name, value)

    db.session.commit()
    return jsonify({"success": True, "profile": _profile(current_user)})


@onboarding_bp.route("/verify", methods=["POST"])
@login_required
def start_verification():
    base_url = current_app.config.get("BASE_URL", "").rstrip("/")
    try:
        session = get_rail().create_verification_session(
            return_url=f"{base_url}/onboarding?verified=true",
            metadata={"userId": str(current_user.id)},
        )
    except RailError as e:
        current_app.logger.error("Error creating verification session for user %s: %s", current_user.id, e)
        raise LedgerError("Failed to start identity verification.", code="rail_unavailable", status_code=502)

    current_user.stripe_verification_session_id = session["id"]
    current_user.is_identity_verified = False
    db.session.commit()
    return jsonify({"success": True, "verificationSessionId": session["id"], "url": session.get("url")})
