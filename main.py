from flask import Flask, request, jsonify
from flask_cors import CORS
from billing_engine import BillingEngine, gateway_from_env
from billing_engine.exceptions import BillingError
import os
import logging

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app = Flask(__name__)

# Enable CORS for all routes (the admin UI calls the API from the browser)
CORS(app)

# Initialize the billing engine
engine = BillingEngine(gateway_from_env())

STATUS_LABELS = {
    400: "validation_failed",
    404: "not_found",
    409: "conflict",
    502: "gateway_failed",
}


def _respond(action, description, status_code=200):
    """Run an engine call and map its outcome to an HTTP response."""
    try:
        result = action()
        logger.info(f"{description}: ok")
        return jsonify(result), status_code

    except BillingError as e:
        logger.error(f"{description} failed: {e.message}")
        body = e.to_dict()
        body["status"] = STATUS_LABELS.get(e.http_status, "failed")
        return jsonify(body), e.http_status

    except (ValueError, KeyError, TypeError) as e:
        # Malformed request data
        logger.error(f"Validation error: {str(e)}")
        return jsonify({
            "error": str(e),
            "status": "validation_failed"
        }), 400

    except Exception as e:
        logger.error(f"Unexpected error in {description}: {str(e)}", exc_info=True)
        return jsonify({
            "error": "An unexpected error occurred during processing",
            "status": "failed"
        }), 500


def _json_body():
    input_data = request.get_json(force=True, silent=True)
    if not input_data:
        raise ValueError("No input data provided")
    return input_data


def _periods():
    raw = request.args.get("periods", "6")
    try:
        return int(raw)
    except ValueError as e:
        raise ValueError(f"periods must be an integer, got: {raw!r}") from e


@app.route("/api", methods=["GET"])
def api_info():
    """API information endpoint"""
    return jsonify({
        "status": "ok",
        "message": "ISP Billing Engine API",
        "version": "1.0",
        "endpoints": {
            "next_due_date": "/accounts/<id>/next-due-date [GET]",
            "schedule": "/accounts/<id>/schedule?periods=N [GET]",
            "create_payment": "/payments [POST]",
            "update_payment": "/payments/<id> [PATCH]",
            "regularize": "/payments/<id>/regularize [POST]",
            "evaluate": "/payments/<id>/evaluate [POST]",
            "lookup": "/intake/lookup/<identity> [GET]",
            "adopt": "/intake/adopt/<identity> [GET]",
            "intake": "/intake [POST]",
            "advance_payment": "/intake/<account_id>/advance-payment [POST]",
            "reconcile": "/reconcile [POST]",
            "health": "/health [GET]"
        }
    }), 200


@app.route("/health", methods=["GET"])
def health():
    """Health check for monitoring"""
    return jsonify({"status": "healthy"}), 200


@app.route("/accounts/<int:account_id>/next-due-date", methods=["GET"])
def next_due_date(account_id):
    return _respond(
        lambda: engine.next_due_date_from_dict(account_id),
        f"Next due date for account {account_id}",
    )


@app.route("/accounts/<int:account_id>/schedule", methods=["GET"])
def schedule(account_id):
    return _respond(
        lambda: engine.schedule_from_dict(account_id, _periods()),
        f"Schedule for account {account_id}",
    )


@app.route("/payments", methods=["POST"])
def create_payment():
    """
    Register a payment (or a postponement) for the next unsettled cycle
    """
    return _respond(
        lambda: engine.create_payment_from_dict(_json_body()),
        "Create payment",
        status_code=201,
    )


@app.route("/payments/<int:payment_id>", methods=["PATCH"])
def update_payment(payment_id):
    return _respond(
        lambda: engine.update_payment_from_dict(payment_id, _json_body()),
        f"Update payment {payment_id}",
    )


@app.route("/payments/<int:payment_id>/regularize", methods=["POST"])
def regularize_payment(payment_id):
    return _respond(
        lambda: engine.regularize_payment_from_dict(payment_id, _json_body()),
        f"Regularize payment {payment_id}",
    )


@app.route("/payments/<int:payment_id>/evaluate", methods=["POST"])
def evaluate_commitment(payment_id):
    return _respond(
        lambda: engine.evaluate_commitment_from_dict(payment_id),
        f"Evaluate commitment {payment_id}",
    )


@app.route("/intake/lookup/<identity>", methods=["GET"])
def lookup_identity(identity):
    return _respond(
        lambda: engine.lookup_identity_from_dict(identity),
        f"Identity lookup {identity}",
    )


@app.route("/intake/adopt/<identity>", methods=["GET"])
def adopt_account(identity):
    return _respond(
        lambda: engine.adopt_account_from_dict(identity),
        f"Adopt account {identity}",
    )


@app.route("/intake", methods=["POST"])
def register_client():
    """
    Register a client; send "resolution": "adopt" to attach the installation
    to an existing account with the same identity number
    """
    return _respond(
        lambda: engine.register_client_from_dict(_json_body()),
        "Client intake",
        status_code=201,
    )


@app.route("/intake/<int:account_id>/advance-payment", methods=["POST"])
def record_advance_payment(account_id):
    return _respond(
        lambda: engine.record_advance_payment_from_dict(account_id, _json_body()),
        f"Advance payment for account {account_id}",
        status_code=201,
    )


@app.route("/reconcile", methods=["POST"])
def reconcile():
    return _respond(engine.reconcile_from_dict, "Status reconciliation")


if __name__ == "__main__":
    port = int(os.environ.get("PORT", 8080))
    app.run(host="0.0.0.0", port=port, debug=False)
