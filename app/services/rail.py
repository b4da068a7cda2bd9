# app/services/rail.py
"""
Payment / payout rail.

The ledger only talks to `PaymentRail`. `StripeRail` implements it over the
Stripe REST API with plain `requests`; tests install a fake through
`app.extensions["payment_rail"]`.

All amounts crossing this boundary are integer cents.
"""
import hashlib
import hmac
import json
import time

import requests
from flask import current_app


class RailError(Exception):
    """The rail refused or failed the call. Nothing is assumed to have happened."""

    def __init__(self, message: str, code: str | None = None, status: int | None = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.status = status


class RailTimeout(RailError):
    """The call may or may not have taken effect on the rail."""


class PaymentRail:
    """Contract the ledger consumes. Return values are plain dicts."""

    # Checkout (buyer side)
    def create_checkout(self, amount_cents, success_url, cancel_url, metadata, customer_email=None, description=None):
        """-> {"id", "url"}"""
        raise NotImplementedError

    def retrieve_checkout(self, session_ref):
        """-> {"id", "paid", "metadata", "payment_ref", "customer_email"}"""
        raise NotImplementedError

    def retrieve_payment(self, payment_ref):
        """-> {"id", "succeeded"}"""
        raise NotImplementedError

    # Identity verification
    def create_verification_session(self, return_url, metadata):
        """-> {"id", "url"}"""
        raise NotImplementedError

    def retrieve_verification(self, session_ref):
        """-> {"id", "verified", "id_number", "document_front", "document_back"}"""
        raise NotImplementedError

    # Connected accounts (seller side)
    def create_connected_account(self, identity, business_type, business_profile, tos_acceptance, email=None, country="US"):
        """-> account_ref"""
        raise NotImplementedError

    def update_connected_account(self, account_ref, identity=None, business_profile=None, tos_acceptance=None):
        raise NotImplementedError

    def retrieve_account_requirements(self, account_ref):
        """-> {"payouts_enabled", "missing", "disabled_reason", "business_profile", "tos_acceptance", "verification_status"}"""
        raise NotImplementedError

    def create_account_link(self, account_ref, refresh_url, return_url):
        """-> url"""
        raise NotImplementedError

    def tokenize_bank_account(self, routing_number, account_number, holder_type, country="US"):
        """-> {"id", "bank_name"}"""
        raise NotImplementedError

    def list_external_accounts(self, account_ref):
        """-> [{"id", "default", "bank_name", "last4", "holder_type"}]"""
        raise NotImplementedError

    def attach_external_account(self, account_ref, token, default=True):
        """-> {"id", "default", "bank_name", "last4", "holder_type"}"""
        raise NotImplementedError

    def delete_external_account(self, account_ref, external_account_id):
        raise NotImplementedError

    # Money movement
    def create_transfer(self, account_ref, amount_cents, metadata, idempotency_key=None):
        """Platform balance -> connected account. -> transfer_ref"""
        raise NotImplementedError

    def create_payout(self, account_ref, amount_cents, method, metadata, idempotency_key=None):
        """Connected account -> seller's bank. -> payout_ref"""
        raise NotImplementedError

    # Webhooks
    def construct_event(self, payload: bytes, signature: str):
        """Verify and parse a webhook delivery. -> event dict"""
        raise NotImplementedError


def _flatten(params, prefix=""):
    """Stripe form encoding: {"a": {"b": 1}, "c": [x]} -> a[b]=1, c[0]=x."""
    items = []
    if isinstance(params, dict):
        for key, value in params.items():
            if value is None:
                continue
            name = f"{prefix}[{key}]" if prefix else str(key)
            items.extend(_flatten(value, name))
    elif isinstance(params, (list, tuple)):
        for i, value in enumerate(params):
            items.extend(_flatten(value, f"{prefix}[{i}]"))
    elif isinstance(params, bool):
        items.append((prefix, "true" if params else "false"))
    else:
        items.append((prefix, str(params)))
    return items


def _bank_account(obj: dict) -> dict:
    return {
        "id": obj.get("id"),
        "default": bool(obj.get("default_for_currency")),
        "bank_name": obj.get("bank_name"),
        "last4": obj.get("last4"),
        "holder_type": obj.get("account_holder_type"),
    }


def _dedupe(values) -> list[str]:
    seen = []
    for v in values:
        if v not in seen:
            seen.append(v)
    return seen


class StripeRail(PaymentRail):
    SIGNATURE_TOLERANCE_SECONDS = 300

    def __init__(self, secret_key, webhook_secret, api_base="https://api.stripe.com/v1", timeout=20, currency="usd"):
        self.secret_key = secret_key
        self.webhook_secret = webhook_secret
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout
        self.currency = currency

    @classmethod
    def from_config(cls, config):
        return cls(
            secret_key=config.get("STRIPE_SECRET_KEY", ""),
            webhook_secret=config.get("STRIPE_WEBHOOK_SECRET", ""),
            api_base=config.get("STRIPE_API_BASE", "https://api.stripe.com/v1"),
            timeout=config.get("STRIPE_TIMEOUT_SECONDS", 20),
            currency=config.get("PAYOUT_CURRENCY", "usd"),
        )

    def _request(self, method, path, params=None, account=None, idempotency_key=None):
        if not self.secret_key:
            raise RailError("STRIPE_SECRET_KEY is not set", code="not_configured")

        headers = {"Authorization": f"Bearer {self.secret_key}"}
        if account:
            headers["Stripe-Account"] = account
        if idempotency_key:
            headers["Idempotency-Key"] = idempotency_key

        encoded = _flatten(params or {})
        url = f"{self.api_base}{path}"
        try:
            if method == "GET":
                response = requests.get(url, params=encoded, headers=headers, timeout=self.timeout)
            else:
                response = requests.request(method, url, data=encoded, headers=headers, timeout=self.timeout)
        except (requests.Timeout, requests.ConnectionError) as e:
            raise RailTimeout(f"{method} {path} did not complete: {e}", code="timeout") from e

        try:
            data = response.json()
        except ValueError:
            data = {}

        if not response.ok:
            err = data.get("error") or {}
            raise RailError(
                err.get("message") or f"{method} {path} failed",
                code=err.get("code") or err.get("type"),
                status=response.status_code,
            )
        return data

    # Checkout

    def create_checkout(self, amount_cents, success_url, cancel_url, metadata, customer_email=None, description=None):
        data = self._request("POST", "/checkout/sessions", {
            "mode": "payment",
            "success_url": success_url,
            "cancel_url": cancel_url,
            "customer_email": customer_email,
            "line_items": [{
                "quantity": 1,
                "price_data": {
                    "currency": self.currency,
                    "unit_amount": int(amount_cents),
                    "product_data": {
                        "name": description or "Unlock content",
                        "description": "Unlock access to this content",
                    },
                },
            }],
            "metadata": metadata,
        })
        return {"id": data["id"], "url": data.get("url")}

    def retrieve_checkout(self, session_ref):
        data = self._request("GET", f"/checkout/sessions/{session_ref}")
        details = data.get("customer_details") or {}
        return {
            "id": data["id"],
            "paid": data.get("payment_status") == "paid",
            "metadata": data.get("metadata") or {},
            "payment_ref": data.get("payment_intent"),
            "customer_email": data.get("customer_email") or details.get("email"),
        }

    def retrieve_payment(self, payment_ref):
        data = self._request("GET", f"/payment_intents/{payment_ref}")
        return {"id": data["id"], "succeeded": data.get("status") == "succeeded"}

    # Identity

    def create_verification_session(self, return_url, metadata):
        data = self._request("POST", "/identity/verification_sessions", {
            "type": "document",
            "return_url": return_url,
            "options": {"document": {"require_id_number": True, "require_matching_selfie": True}},
            "metadata": metadata,
        })
        return {"id": data["id"], "url": data.get("url")}

    def retrieve_verification(self, session_ref):
        data = self._request("GET", f"/identity/verification_sessions/{session_ref}", {
            "expand": ["verified_outputs.id_number", "last_verification_report"],
        })
        outputs = data.get("verified_outputs") or {}
        report = data.get("last_verification_report") or {}
        files = ((report.get("document") or {}).get("files") if isinstance(report, dict) else None) or []
        return {
            "id": data["id"],
            "verified": data.get("status") == "verified",
            "id_number": outputs.get("id_number"),
            "document_front": files[0] if len(files) > 0 else None,
            "document_back": files[1] if len(files) > 1 else None,
        }

    # Connected accounts

    def create_connected_account(self, identity, business_type, business_profile, tos_acceptance, email=None, country="US"):
        data = self._request("POST", "/accounts", {
            "type": "custom",
            "country": country,
            "email": email,
            "business_type": business_type,
            "capabilities": {
                "card_payments": {"requested": True},
                "transfers": {"requested": True},
            },
            "business_profile": business_profile,
            "tos_acceptance": tos_acceptance,
            "individual": identity,
        })
        return data["id"]

    def update_connected_account(self, account_ref, identity=None, business_profile=None, tos_acceptance=None):
        self._request("POST", f"/accounts/{account_ref}", {
            "business_profile": business_profile,
            "tos_acceptance": tos_acceptance,
            "individual": identity,
        })

    def retrieve_account_requirements(self, account_ref):
        data = self._request("GET", f"/accounts/{account_ref}")
        req = data.get("requirements") or {}
        profile = data.get("business_profile") or {}
        tos = data.get("tos_acceptance") or {}
        individual = data.get("individual") or {}
        return {
            "payouts_enabled": bool(data.get("payouts_enabled")),
            "missing": _dedupe(
                (req.get("currently_due") or []) + (req.get("eventually_due") or []) + (req.get("past_due") or [])
            ),
            "disabled_reason": req.get("disabled_reason"),
            "business_profile": {"mcc": profile.get("mcc"), "url": profile.get("url")},
            "tos_acceptance": {"date": tos.get("date"), "ip": tos.get("ip")},
            "verification_status": (individual.get("verification") or {}).get("status"),
        }

    def create_account_link(self, account_ref, refresh_url, return_url):
        data = self._request("POST", "/account_links", {
            "account": account_ref,
            "refresh_url": refresh_url,
            "return_url": return_url,
            "type": "account_onboarding",
        })
        return data["url"]

    def tokenize_bank_account(self, routing_number, account_number, holder_type, country="US"):
        data = self._request("POST", "/tokens", {
            "bank_account": {
                "country": country,
                "currency": self.currency,
                "routing_number": routing_number,
                "account_number": account_number,
                "account_holder_type": holder_type,
            },
        })
        return {"id": data["id"], "bank_name": (data.get("bank_account") or {}).get("bank_name")}

    def list_external_accounts(self, account_ref):
        data = self._request("GET", f"/accounts/{account_ref}/external_accounts", {
            "object": "bank_account",
            "limit": 10,
        })
        return [_bank_account(obj) for obj in data.get("data") or []]

    def attach_external_account(self, account_ref, token, default=True):
        data = self._request("POST", f"/accounts/{account_ref}/external_accounts", {
            "external_account": token,
            "default_for_currency": default,
        })
        return _bank_account(data)

    def delete_external_account(self, account_ref, external_account_id):
        self._request("DELETE", f"/accounts/{account_ref}/external_accounts/{external_account_id}")

    # Money movement

    def create_transfer(self, account_ref, amount_cents, metadata, idempotency_key=None):
        data = self._request("POST", "/transfers", {
            "amount": int(amount_cents),
            "currency": self.currency,
            "destination": account_ref,
            "metadata": metadata,
        }, idempotency_key=idempotency_key)
        return data["id"]

    def create_payout(self, account_ref, amount_cents, method, metadata, idempotency_key=None):
        data = self._request("POST", "/payouts", {
            "amount": int(amount_cents),
            "currency": self.currency,
            "method": method,
            "metadata": metadata,
        }, account=account_ref, idempotency_key=idempotency_key)
        return data["id"]

    # Webhooks

    def construct_event(self, payload: bytes, signature: str):
        if not signature or not self.webhook_secret:
            raise RailError("Missing webhook signature", code="invalid_signature")

        parts = {}
        for item in signature.split(","):
            key, _, value = item.strip().partition("=")
            parts.setdefault(key, []).append(value)

        timestamp = (parts.get("t") or [""])[0]
        if not timestamp.isdigit():
            raise RailError("Malformed webhook signature", code="invalid_signature")

        signed = timestamp.encode("utf-8") + b"." + payload
        computed = hmac.new(self.webhook_secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()

        if not any(hmac.compare_digest(computed, candidate) for candidate in parts.get("v1", [])):
            raise RailError("Invalid webhook signature", code="invalid_signature")

        if abs(time.time() - int(timestamp)) > self.SIGNATURE_TOLERANCE_SECONDS:
            raise RailError("Webhook timestamp outside tolerance", code="invalid_signature")

        try:
            return json.loads(payload.decode("utf-8"))
        except ValueError as e:
            raise RailError("Webhook payload is not JSON", code="invalid_payload") from e


def init_rail(app, rail: PaymentRail | None = None):
    app.extensions["payment_rail"] = rail or StripeRail.from_config(app.config)


def get_rail() -> PaymentRail:
    return current_app.extensions["payment_rail"]
