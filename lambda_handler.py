"""
AWS Lambda handler for the ISP Billing Engine API.

This is the production entry point for AWS Lambda deployments.
For local development, use main.py (Flask app) instead.
"""

import base64
import json
import logging
import os
import re

from billing_engine import BillingEngine, gateway_from_env
from billing_engine.exceptions import BillingError

# Configure logging
logger = logging.getLogger()
logger.setLevel(logging.INFO)

# Environment (dev, staging, prod)
ENVIRONMENT = os.environ.get("ENVIRONMENT", "dev")

# Initialize engine (reused across warm invocations)
engine = BillingEngine(gateway_from_env())

# CORS headers for API Gateway
CORS_HEADERS = {
    "Content-Type": "application/json",
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "Content-Type,Authorization",
    "Access-Control-Allow-Methods": "GET,POST,PATCH,OPTIONS",
}

STATUS_LABELS = {
    400: "validation_failed",
    404: "not_found",
    409: "conflict",
    502: "gateway_failed",
}


def _response(status_code, body):
    return {"statusCode": status_code, "headers": CORS_HEADERS, "body": json.dumps(body)}


def _parse_body(event):
    """Decode the request body; raises ValueError when it is missing or not JSON."""
    body = event.get("body", "")
    if not isinstance(body, str):
        if not body:
            raise ValueError("No input data provided")
        return body

    if not body:
        raise ValueError("No input data provided")
    # Handle base64 encoded body (API Gateway)
    if event.get("isBase64Encoded"):
        body = base64.b64decode(body).decode("utf-8")
    try:
        return json.loads(body)
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON: {str(e)}") from e


def _query_param(event, name, default=None):
    params = event.get("queryStringParameters") or {}
    return params.get(name, default)


def handle_health(event):
    """Health check endpoint."""
    return _response(200, {"status": "healthy", "environment": ENVIRONMENT})


def handle_api_info(event):
    """API information endpoint."""
    return _response(
        200,
        {
            "status": "ok",
            "message": "ISP Billing Engine API",
            "version": "1.0",
            "environment": ENVIRONMENT,
            "runtime": "AWS Lambda",
            "endpoints": [f"{method} {pattern.pattern}" for method, pattern, _, _ in ROUTES],
        },
    )


def handle_next_due_date(event, account_id):
    return 200, engine.next_due_date_from_dict(int(account_id))


def handle_schedule(event, account_id):
    raw = _query_param(event, "periods", "6")
    try:
        periods = int(raw)
    except ValueError as e:
        raise ValueError(f"periods must be an integer, got: {raw!r}") from e
    return 200, engine.schedule_from_dict(int(account_id), periods)


def handle_create_payment(event):
    return 201, engine.create_payment_from_dict(_parse_body(event))


def handle_update_payment(event, payment_id):
    return 200, engine.update_payment_from_dict(int(payment_id), _parse_body(event))


def handle_regularize(event, payment_id):
    return 200, engine.regularize_payment_from_dict(int(payment_id), _parse_body(event))


def handle_evaluate(event, payment_id):
    return 200, engine.evaluate_commitment_from_dict(int(payment_id))


def handle_lookup(event, identity):
    return 200, engine.lookup_identity_from_dict(identity)


def handle_adopt(event, identity):
    return 200, engine.adopt_account_from_dict(identity)


def handle_intake(event):
    return 201, engine.register_client_from_dict(_parse_body(event))


def handle_advance_payment(event, account_id):
    return 201, engine.record_advance_payment_from_dict(int(account_id), _parse_body(event))


def handle_reconcile(event):
    return 200, engine.reconcile_from_dict()


# (method, path pattern, handler, calls the engine)
ROUTES = [
    ("GET", re.compile(r"^/health$"), handle_health, False),
    ("GET", re.compile(r"^/api$"), handle_api_info, False),
    ("GET", re.compile(r"^/accounts/(?P<account_id>\d+)/next-due-date$"), handle_next_due_date, True),
    ("GET", re.compile(r"^/accounts/(?P<account_id>\d+)/schedule$"), handle_schedule, True),
    ("POST", re.compile(r"^/payments$"), handle_create_payment, True),
    ("PATCH", re.compile(r"^/payments/(?P<payment_id>\d+)$"), handle_update_payment, True),
    ("POST", re.compile(r"^/payments/(?P<payment_id>\d+)/regularize$"), handle_regularize, True),
    ("POST", re.compile(r"^/payments/(?P<payment_id>\d+)/evaluate$"), handle_evaluate, True),
    ("GET", re.compile(r"^/intake/lookup/(?P<identity>[^/]+)$"), handle_lookup, True),
    ("GET", re.compile(r"^/intake/adopt/(?P<identity>[^/]+)$"), handle_adopt, True),
    ("POST", re.compile(r"^/intake$"), handle_intake, True),
    ("POST", re.compile(r"^/intake/(?P<account_id>\d+)/advance-payment$"), handle_advance_payment, True),
    ("POST", re.compile(r"^/reconcile$"), handle_reconcile, True),
]


def lambda_handler(event, context):
    """
    Main Lambda entry point.

    Handles API Gateway events for the routes in ROUTES and OPTIONS (CORS
    preflight). Supports both REST API and HTTP API event formats.
    """
    # Handle CORS preflight
    http_method = event.get("httpMethod") or event.get("requestContext", {}).get("http", {}).get("method", "")
    if http_method == "OPTIONS":
        return {"statusCode": 200, "headers": CORS_HEADERS, "body": ""}

    # Get path (supports both REST API and HTTP API formats)
    path = event.get("path") or event.get("rawPath", "")

    for method, pattern, handler, calls_engine in ROUTES:
        match = pattern.match(path)
        if match and method == http_method:
            if not calls_engine:
                return handler(event)
            return dispatch(handler, event, path, **match.groupdict())

    return _response(404, {"error": "Not found", "path": path})


def dispatch(handler, event, path, **params):
    """Run an engine handler and map its errors to HTTP responses."""
    try:
        status_code, result = handler(event, **params)
        logger.info(f"{path}: ok")
        return _response(status_code, result)

    except BillingError as e:
        logger.error(f"{path} failed: {e.message}")
        body = e.to_dict()
        body["status"] = STATUS_LABELS.get(e.http_status, "failed")
        return _response(e.http_status, body)

    except (ValueError, KeyError, TypeError) as e:
        # Validation errors from input parsing (missing fields, invalid types, etc.)
        logger.error(f"Validation error: {str(e)}")
        return _response(400, {"error": f"Validation error: {str(e)}", "status": "validation_failed"})

    except Exception as e:
        # Unexpected errors - log details, return a generic message
        logger.error(f"Unexpected processing error: {str(e)}", exc_info=True)
        return _response(500, {"error": "An unexpected error occurred during processing", "status": "failed"})
