import os
from typing import Dict, Optional

from dotenv import load_dotenv
from flask import Flask, jsonify, request, send_from_directory
from flask_cors import CORS
from werkzeug.middleware.proxy_fix import ProxyFix

from mail_transport import (
    ConfigurationError,
    EmailError,
    MailTransport,
    TransportError,
    build_transport,
)
from order_email import ValidationError, normalize, resolve_host_url
from order_notifier import DEFAULT_FROM_EMAIL, DEFAULT_SENDER_NAME, OrderEmailDispatcher
from record_store import JsonRecordStore, RecordStoreError

load_dotenv()

BACKEND_ROOT = os.path.dirname(os.path.abspath(__file__))


def load_config_from_env() -> Dict[str, object]:
    return {
        "API_URL": (os.getenv("API_URL") or "").strip(),
        "FROM_EMAIL": (os.getenv("FROM_EMAIL") or DEFAULT_FROM_EMAIL).strip(),
        "MAIL_SENDER_NAME": (
            os.getenv("MAIL_SENDER_NAME") or DEFAULT_SENDER_NAME
        ).strip(),
        "OWNER_EMAIL": (os.getenv("OWNER_EMAIL") or "").strip(),
        "MAIL_TRANSPORT": (os.getenv("MAIL_TRANSPORT") or "").strip(),
        "MAIL_API_TOKEN": (
            os.getenv("MAILTRAP_API_TOKEN") or os.getenv("MAIL_API_TOKEN") or ""
        ).strip(),
        "MAIL_API_URL": (os.getenv("MAIL_API_URL") or "").strip(),
        "RESEND_API_KEY": (os.getenv("RESEND_API_KEY") or "").strip(),
        "SMTP_HOST": (os.getenv("SMTP_HOST") or "").strip(),
        "SMTP_PORT": os.getenv("SMTP_PORT", "587"),
        "SMTP_USERNAME": os.getenv("SMTP_USERNAME", ""),
        "SMTP_PASSWORD": os.getenv("SMTP_PASSWORD", ""),
        "SMTP_USE_TLS": os.getenv("SMTP_USE_TLS", "true"),
        "MAIL_TIMEOUT_SECONDS": os.getenv("MAIL_TIMEOUT_SECONDS", "15"),
        "CURRENCY_LABEL": (os.getenv("CURRENCY_LABEL") or "Ksh").strip(),
        "DB_PATH": os.getenv("DB_PATH") or os.path.join(BACKEND_ROOT, "db.json"),
        "IMAGES_FOLDER": os.getenv("IMAGES_FOLDER")
        or os.path.join(BACKEND_ROOT, "images"),
        "TRUSTED_PROXY_HOPS": os.getenv("TRUSTED_PROXY_HOPS", "1"),
    }


def create_app(
    test_config: Optional[Dict[str, object]] = None,
    mail_transport: Optional[MailTransport] = None,
) -> Flask:
    """Create and configure the Flask application."""
    app = Flask(__name__)

    # --- Configuration ---
    app.config.update(load_config_from_env())
    if test_config:
        app.config.update(test_config)

    # Honor proxy headers so image links keep the public origin when API_URL is unset.
    try:
        trusted_proxy_hops = max(0, int(app.config["TRUSTED_PROXY_HOPS"]))
    except (TypeError, ValueError):
        trusted_proxy_hops = 1
    if trusted_proxy_hops:
        app.wsgi_app = ProxyFix(
            app.wsgi_app,
            x_for=trusted_proxy_hops,
            x_proto=trusted_proxy_hops,
            x_host=trusted_proxy_hops,
            x_port=trusted_proxy_hops,
        )

    # --- Initialize extensions ---
    CORS(
        app,
        origins="*",
        send_wildcard=True,
        methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
        allow_headers=["Content-Type", "Authorization"],
    )

    record_store = JsonRecordStore(app.config["DB_PATH"])

    # The transport is shared by every request; build and verify it once.
    configuration_error = None
    transport = mail_transport
    if transport is None:
        try:
            transport = build_transport(app.config)
        except ConfigurationError as exc:
            configuration_error = str(exc)
            app.logger.warning("Mail transport disabled: %s", exc)
    if transport is not None:
        try:
            transport.verify()
        except ConfigurationError as exc:
            configuration_error = str(exc)
            transport = None
            app.logger.warning("Mail transport disabled: %s", exc)
        except TransportError as exc:
            app.logger.warning(
                "Mail transport '%s' failed its readiness check: %s",
                transport.name,
                exc,
            )
    elif configuration_error is None:
        app.logger.warning(
            "No mail transport configured; order emails will be rejected."
        )

    dispatcher = OrderEmailDispatcher(
        transport,
        from_email=app.config["FROM_EMAIL"],
        owner_email=app.config["OWNER_EMAIL"],
        sender_name=app.config["MAIL_SENDER_NAME"],
        currency=app.config["CURRENCY_LABEL"],
        configuration_error=configuration_error,
    )
    app.extensions["record_store"] = record_store
    app.extensions["order_email_dispatcher"] = dispatcher

    # --- Routes ---

    @app.route("/")
    def index():
        return "OK"

    @app.route("/health")
    def health():
        return jsonify({"status": "ok", "mail": dispatcher.readiness()})

    @app.route("/images/<path:filename>")
    def serve_image(filename: str):
        return send_from_directory(app.config["IMAGES_FOLDER"], filename)

    @app.route("/send-order-email", methods=["POST"])
    def send_order_email():
        payload = request.get_json(silent=True)
        if not isinstance(payload, dict):
            payload = {}

        host_url = resolve_host_url(app.config["API_URL"], request.host_url)
        try:
            order = normalize(payload.get("order"), host_url)
        except ValidationError as exc:
            return jsonify({"error": str(exc)}), 400

        try:
            result = dispatcher.dispatch(order)
        except EmailError as exc:
            app.logger.error(
                "Email error for order %s: %s", order["id"] or "(no id)", exc
            )
            return jsonify({"error": "Email failed", "details": str(exc)}), 500
        except Exception:
            app.logger.exception(
                "Unexpected email error for order %s", order["id"] or "(no id)"
            )
            return jsonify({"error": "Email failed", "details": "Unexpected error"}), 500

        app.logger.info(
            "Order %s emails sent to %s",
            order["id"] or "(no id)",
            ", ".join(result["recipients"]),
        )
        return jsonify({"ok": True})

    def record_store_error(exc: RecordStoreError):
        return jsonify({"error": str(exc)}), exc.status_code

    @app.route("/<collection>", methods=["GET"])
    def list_records(collection: str):
        try:
            records = record_store.list(collection, request.args.to_dict())
        except RecordStoreError as exc:
            return record_store_error(exc)
        return jsonify(records)

    @app.route("/<collection>", methods=["POST"])
    def create_record(collection: str):
        try:
            record = record_store.create(collection, request.get_json(silent=True))
        except RecordStoreError as exc:
            return record_store_error(exc)
        return jsonify(record), 201

    @app.route("/<collection>/<record_id>", methods=["GET"])
    def get_record(collection: str, record_id: str):
        try:
            record = record_store.get(collection, record_id)
        except RecordStoreError as exc:
            return record_store_error(exc)
        return jsonify(record)

    @app.route("/<collection>/<record_id>", methods=["PUT", "PATCH"])
    def update_record(collection: str, record_id: str):
        try:
            record = record_store.update(
                collection,
                record_id,
                request.get_json(silent=True),
                merge=request.method == "PATCH",
            )
        except RecordStoreError as exc:
            return record_store_error(exc)
        return jsonify(record)

    @app.route("/<collection>/<record_id>", methods=["DELETE"])
    def delete_record(collection: str, record_id: str):
        try:
            record_store.delete(collection, record_id)
        except RecordStoreError as exc:
            return record_store_error(exc)
        return jsonify({})

    return app


app = create_app()


if __name__ == "__main__":
    port = int(os.environ.get("PORT", 3000))
    app.run(host="0.0.0.0", port=port)
