# Overview: Request decorators for API routes.

from functools import wraps

from flask import current_app, jsonify, request

from .errors import LedgerError, ValidationError


def json_body() -> dict:
    """Request JSON as a dict; anything else is a 400."""
    payload = request.get_json(silent=True)
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    return payload


def require_owner_header(f):
    """
    Resolve the acting owner from the X-Owner-Id header.

    Authentication happens upstream (gateway / mobile app session); this
    service trusts the forwarded owner id and only checks its shape.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        raw = request.headers.get("X-Owner-Id", "").strip()
        if not raw.isdigit() or int(raw) <= 0:
            return jsonify({"error": "X-Owner-Id header required", "code": "validation_error"}), 400
        kwargs["owner_id"] = int(raw)
        return f(*args, **kwargs)

    return decorated_function


def ledger_errors(action: str):
    """
    Map LedgerError subclasses to their JSON body and status code.

    Anything unexpected is logged with a traceback and reported as a 500
    without internals.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            try:
                return f(*args, **kwargs)
            except LedgerError as e:
                return jsonify(e.to_dict()), e.status_code
            except Exception:
                current_app.logger.exception("Failed to %s", action)
                return jsonify({"error": "Internal server error"}), 500

        return decorated_function

    return decorator
