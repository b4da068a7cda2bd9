import pytest

from app.errors import Ineligible, ValidationFailed
from app.extensions import db
from app.services.connect import (
    bank_info,
    check_requirements,
    complete_requirements,
    configure_wallet,
    fix_requirements,
    format_requirement,
    replace_bank_account,
)


def test_onboarding_gap_blocks_account_creation(ctx, make_user, rail):
    user = make_user(is_identity_verified=True, stripe_verification_session_id="vs_1", phone_number=None)

    with pytest.raises(ValidationFailed) as exc:
        configure_wallet(user, "110000000", "000123456789", "individual")

    assert exc.value.code == "onboarding_incomplete"
    assert exc.value.extra["field"] == "phone_number"
    assert rail.calls == []


def test_unverified_identity_blocks_account_creation(ctx, make_user, rail):
    user = make_user()

    with pytest.raises(Ineligible) as exc:
        configure_wallet(user, "110000000", "000123456789", "individual")

    assert exc.value.code == "identity_unverified"
    assert rail.calls == []


def test_configure_creates_account_and_attaches_bank(ctx, make_user, rail):
    user = make_user(is_identity_verified=True, stripe_verification_session_id="vs_1")

    result = configure_wallet(user, "110000000", "000123456789", "individual", client_ip="203.0.113.9")

    assert result["connectedAccountId"] == user.stripe_connect_account_id
    assert result["bankName"] == "TEST BANK"
    assert result["needsVerification"] is False
    created = rail.called("create_connected_account")[0]
    assert created["business_type"] == "individual"
    assert created["identity"]["dob"] == {"day": 2, "month": 1, "year": 1990}
    assert len(rail.external_accounts[user.stripe_connect_account_id]) == 1


def test_bank_swap_attaches_before_deleting(ctx, make_seller, rail):
    seller = make_seller()
    account_ref = seller.stripe_connect_account_id
    old_id = rail.external_accounts[account_ref][0]["id"]

    new_bank = replace_bank_account(seller, "110000000", "000999888777", "business")

    names = rail.call_names()
    assert names.index("attach_external_account") < names.index("delete_external_account")
    assert rail.called("delete_external_account")[0]["external_account_id"] == old_id
    assert rail.called("tokenize_bank_account")[0]["holder_type"] == "company"
    assert [acc["id"] for acc in rail.external_accounts[account_ref]] == [new_bank["id"]]


def test_bank_info_reports_default_account(ctx, make_seller, make_user):
    assert bank_info(make_seller()) == {
        "hasBankAccount": True,
        "bankName": "TEST BANK",
        "accountType": "individual",
        "last4": "6789",
    }
    assert bank_info(make_user())["hasBankAccount"] is False


def test_check_requirements_auto_fixes_before_asking(ctx, make_seller, rail):
    seller = make_seller()
    rail.missing = ["business_profile.mcc", "tos_acceptance.ip", "individual.ssn_last_4"]

    result = check_requirements(seller, client_ip="203.0.113.9")

    assert rail.called("update_connected_account")
    assert result["missingRequirements"] == ["individual.ssn_last_4"]
    assert result["allMissingRequirements"] == ["individual.ssn_last_4"]
    assert result["payoutsEnabled"] is False


def test_fix_requirements_needs_account(ctx, make_user):
    with pytest.raises(Ineligible) as exc:
        fix_requirements(make_user())
    assert exc.value.code == "no_connected_account"


def test_invalid_ssn_is_rejected_before_rail(ctx, make_seller, rail):
    seller = make_seller()

    with pytest.raises(ValidationFailed):
        complete_requirements(seller, "12a4")

    assert rail.calls == []


def test_complete_requirements_with_ssn(ctx, make_seller, rail):
    seller = make_seller()
    rail.missing = ["individual.ssn_last_4"]

    result = complete_requirements(seller, "1234")

    update = rail.called("update_connected_account")[0]
    assert update["identity"] == {"ssn_last_4": "1234"}
    assert result["payoutsEnabled"] is True


def test_complete_requirements_prefers_verified_id_number(ctx, make_seller, rail):
    seller = make_seller()
    rail.verifications["vs_seller"] = {
        "id": "vs_seller",
        "verified": True,
        "id_number": "123456789",
        "document_front": None,
        "document_back": None,
    }

    complete_requirements(seller, "1234")

    assert rail.called("update_connected_account")[0]["identity"] == {"id_number": "123456789"}


def test_complete_requirements_without_any_id(ctx, make_seller, rail):
    seller = make_seller()
    seller.is_identity_verified = False
    db.session.commit()

    with pytest.raises(ValidationFailed) as exc:
        complete_requirements(seller, None)

    assert exc.value.code == "id_number_required"


def test_requirement_labels():
    assert format_requirement("business_profile.mcc") == "Business Profile.Mcc"
