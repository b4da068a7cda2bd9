import itertools
import json
from datetime import date
from decimal import Decimal

import pytest

from app import create_app
from app.extensions import db
from app.models import Link, User
from app.services.rail import PaymentRail, RailError


class FakeRail(PaymentRail):
    """Deterministic in-memory rail. Every call is recorded in `calls`."""

    def __init__(self):
        self.calls = []
        self._ids = itertools.count(1)

        # Connected-account state shared by every account
        self.missing = []
        self.disabled_reason = None
        self.verification_status = "verified"
        self.external_accounts = {}

        self.checkouts = {}
        self.payments = {}
        self.verifications = {}

        # Failure injection
        self.transfer_error = None
        self.payout_error = None
        self.on_transfer = None

    def _record(self, name, **kwargs):
        self.calls.append((name, kwargs))

    def _next(self, prefix):
        return f"{prefix}_{next(self._ids)}"

    def called(self, name):
        return [kwargs for call, kwargs in self.calls if call == name]

    def call_names(self):
        return [name for name, _ in self.calls]

    # Checkout

    def create_checkout(self, amount_cents, success_url, cancel_url, metadata, customer_email=None, description=None):
        self._record("create_checkout", amount_cents=amount_cents, metadata=metadata, customer_email=customer_email)
        ref = self._next("cs")
        self.checkouts[ref] = {
            "id": ref,
            "paid": False,
            "metadata": dict(metadata),
            "payment_ref": self._next("pi"),
            "customer_email": customer_email,
        }
        return {"id": ref, "url": f"https://checkout.test/{ref}"}

    def retrieve_checkout(self, session_ref):
        self._record("retrieve_checkout", session_ref=session_ref)
        if session_ref not in self.checkouts:
            raise RailError("No such checkout session", code="resource_missing", status=404)
        return dict(self.checkouts[session_ref])

    def retrieve_payment(self, payment_ref):
        self._record("retrieve_payment", payment_ref=payment_ref)
        return {"id": payment_ref, "succeeded": self.payments.get(payment_ref, True)}

    # Identity

    def create_verification_session(self, return_url, metadata):
        self._record("create_verification_session", metadata=metadata)
        return {"id": self._next("vs"), "url": "https://verify.test/start"}

    def retrieve_verification(self, session_ref):
        self._record("retrieve_verification", session_ref=session_ref)
        return self.verifications.get(session_ref, {
            "id": session_ref,
            "verified": True,
            "id_number": None,
            "document_front": None,
            "document_back": None,
        })

    # Connected accounts

    def create_connected_account(self, identity, business_type, business_profile, tos_acceptance, email=None, country="US"):
        self._record("create_connected_account", identity=identity, business_type=business_type)
        ref = self._next("acct")
        self.external_accounts[ref] = []
        return ref

    def update_connected_account(self, account_ref, identity=None, business_profile=None, tos_acceptance=None):
        self._record(
            "update_connected_account",
            account_ref=account_ref,
            identity=identity,
            business_profile=business_profile,
            tos_acceptance=tos_acceptance,
        )
        cleared = set()
        if business_profile and business_profile.get("mcc"):
            cleared.add("business_profile.mcc")
        if business_profile and business_profile.get("url"):
            cleared.add("business_profile.url")
        if tos_acceptance and tos_acceptance.get("date") and tos_acceptance.get("ip"):
            cleared.update({"tos_acceptance.date", "tos_acceptance.ip"})
        if identity and (identity.get("ssn_last_4") or identity.get("id_number")):
            cleared.update({"individual.ssn_last_4", "individual.id_number"})
        self.missing = [req for req in self.missing if req not in cleared]

    def retrieve_account_requirements(self, account_ref):
        self._record("retrieve_account_requirements", account_ref=account_ref)
        return {
            "payouts_enabled": not self.missing and not self.disabled_reason,
            "missing": list(self.missing),
            "disabled_reason": self.disabled_reason,
            "business_profile": {"mcc": None, "url": None},
            "tos_acceptance": {"date": None, "ip": None},
            "verification_status": self.verification_status,
        }

    def create_account_link(self, account_ref, refresh_url, return_url):
        self._record("create_account_link", account_ref=account_ref)
        return f"https://connect.test/setup/{account_ref}"

    def tokenize_bank_account(self, routing_number, account_number, holder_type, country="US"):
        self._record("tokenize_bank_account", routing_number=routing_number, holder_type=holder_type)
        return {"id": self._next("btok"), "bank_name": "TEST BANK", "last4": account_number[-4:]}

    def list_external_accounts(self, account_ref):
        self._record("list_external_accounts", account_ref=account_ref)
        return [dict(acc) for acc in self.external_accounts.get(account_ref, [])]

    def attach_external_account(self, account_ref, token, default=True):
        self._record("attach_external_account", account_ref=account_ref, token=token)
        accounts = self.external_accounts.setdefault(account_ref, [])
        if default:
            for acc in accounts:
                acc["default"] = False
        bank = {"id": self._next("ba"), "default": default, "bank_name": "TEST BANK", "last4": "6789", "holder_type": "individual"}
        accounts.append(bank)
        return dict(bank)

    def delete_external_account(self, account_ref, external_account_id):
        self._record("delete_external_account", account_ref=account_ref, external_account_id=external_account_id)
        self.external_accounts[account_ref] = [
            acc for acc in self.external_accounts.get(account_ref, []) if acc["id"] != external_account_id
        ]

    # Money movement

    def create_transfer(self, account_ref, amount_cents, metadata, idempotency_key=None):
        self._record(
            "create_transfer",
            account_ref=account_ref,
            amount_cents=amount_cents,
            metadata=metadata,
            idempotency_key=idempotency_key,
        )
        if self.on_transfer is not None:
            self.on_transfer()
        if self.transfer_error is not None:
            raise self.transfer_error
        return self._next("tr")

    def create_payout(self, account_ref, amount_cents, method, metadata, idempotency_key=None):
        self._record(
            "create_payout",
            account_ref=account_ref,
            amount_cents=amount_cents,
            method=method,
            idempotency_key=idempotency_key,
        )
        if self.payout_error is not None:
            raise self.payout_error
        return self._next("po")

    # Webhooks

    def construct_event(self, payload, signature):
        if signature != "valid":
            raise RailError("Invalid webhook signature", code="invalid_signature")
        return json.loads(payload)


@pytest.fixture
def rail():
    return FakeRail()


@pytest.fixture
def app(tmp_path, rail):
    app = create_app(
        "testing",
        test_config={"SQLALCHEMY_DATABASE_URI": f"sqlite:///{tmp_path / 'ledger.db'}"},
        rail=rail,
    )
    with app.app_context():
        db.create_all()

    yield app

    with app.app_context():
        db.drop_all()
        db.engine.dispose()


@pytest.fixture
def ctx(app):
    """Application context for calling services directly."""
    with app.app_context():
        yield app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def login():
    def _login(client, user_id):
        with client.session_transaction() as sess:
            sess["_user_id"] = str(user_id)
            sess["_fresh"] = True
    return _login


@pytest.fixture
def make_user():
    counter = itertools.count(1)

    def _make(**kwargs):
        n = next(counter)
        fields = {
            "email": f"seller{n}@example.com",
            "first_name": "Ada",
            "last_name": "Lovelace",
            "date_of_birth": date(1990, 1, 2),
            "phone_number": "+15555550100",
            "address_line1": "1 Main St",
            "city": "Springfield",
            "state": "IL",
            "postal_code": "62701",
            "country": "US",
        }
        fields.update(kwargs)
        user = User(**fields)
        db.session.add(user)
        db.session.commit()
        return user

    return _make


@pytest.fixture
def make_link():
    counter = itertools.count(1)

    def _make(user, **kwargs):
        n = next(counter)
        fields = {"slug": f"link-{n:03d}", "name": f"Link {n}", "price": Decimal("10.00")}
        fields.update(kwargs)
        link = Link(user_id=user.id, **fields)
        db.session.add(link)
        db.session.commit()
        return link

    return _make


@pytest.fixture
def make_seller(make_user, rail):
    """A seller who can withdraw: verified, connected account, one bank account."""

    def _make(**kwargs):
        user = make_user(is_identity_verified=True, stripe_verification_session_id="vs_seller", **kwargs)
        account_ref = f"acct_seller_{user.id}"
        user.stripe_connect_account_id = account_ref
        db.session.commit()
        rail.external_accounts[account_ref] = [
            {"id": f"ba_seller_{user.id}", "default": True, "bank_name": "TEST BANK", "last4": "6789", "holder_type": "individual"},
        ]
        return user

    return _make
