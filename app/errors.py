# app/errors.py
from flask import current_app, jsonify, request
from werkzeug.exceptions import HTTPException


class LedgerError(Exception):
    """Base for errors that are safe to show to the caller.

    `message` is user-facing. Anything sensitive belongs in the log, not here.
    """

    status_code = 400
    code = "error"

    def __init__(self, message: str, code: str | None = None, status_code: int | None = None, **extra):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        if status_code is not None:
            self.status_code = status_code
        self.extra = extra

    def to_dict(self) -> dict:
        body = {"success": False, "error": self.message, "code": self.code}
        body.update(self.extra)
        return body


class ValidationFailed(LedgerError):
    code = "invalid"


class NotFound(LedgerError):
    status_code = 404
    code = "not_found"


class Forbidden(LedgerError):
    status_code = 403
    code = "forbidden"


class Ineligible(LedgerError):
    """A requirement for the operation is unmet. `code` names which one."""

    code = "ineligible"


class WithdrawalFailed(LedgerError):
    status_code = 502
    code = "withdrawal_failed"

    def __init__(self, code: str = "withdrawal_failed", **extra):
        super().__init__(
            "We couldn't complete your withdrawal. Please try again later.",
            code=code,
            **extra,
        )


class SettlementFailed(LedgerError):
    """Funds left the platform but the ledger could not be updated."""

    status_code = 500
    code = "settlement_failed"

    def __init__(self, withdrawal_id: int | None = None):
        super().__init__(
            "Your withdrawal is being processed. Please contact support if it does not arrive.",
            withdrawal_id=withdrawal_id,
        )


def form_error(form) -> ValidationFailed:
    """Turn the first WTForms error into a ValidationFailed."""
    for field_name, errors in form.errors.items():
        if errors:
            return ValidationFailed(f"{field_name}: {errors[0]}", field=field_name)
    return ValidationFailed("Invalid request.")


def register_error_handlers(app):
    @app.errorhandler(LedgerError)
    def handle_ledger_error(err: LedgerError):
        return jsonify(err.to_dict()), err.status_code

    @app.errorhandler(HTTPException)
    def handle_http_error(err: HTTPException):
        code = (err.name or "error").lower().replace(" ", "_")
        return jsonify({"success": False, "error": err.description, "code": code}), err.code

    @app.errorhandler(Exception)
    def handle_unexpected_error(err: Exception):
        current_app.logger.exception("Unhandled error on %s %s", request.method, request.path)
        return jsonify({
            "success": False,
            "error": "Something went wrong. Please try again later.",
            "code": "internal_error",
        }), 500
