import logging
from typing import Optional

from flask import Flask, Response, jsonify, request

from .config import Settings, configure_logging, load_settings
from .scraper import collect_sips_data

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, Authorization, apikey",
}

logger = logging.getLogger("logos-sips.app")


def create_app(settings: Optional[Settings] = None) -> Flask:
    settings = settings or load_settings()
    configure_logging(settings)

    app = Flask(__name__)

    @app.after_request
    def _allow_any_origin(response: Response) -> Response:
        response.headers["Access-Control-Allow-Origin"] = "*"
        return response

    @app.route("/sips", methods=["POST", "OPTIONS"])
    def sips_lookup():
        if request.method == "OPTIONS":
            return Response("ok", headers=CORS_HEADERS)

        body = request.get_json(silent=True)
        cups = body.get("cups") if isinstance(body, dict) else None
        if not cups or not isinstance(cups, str):
            return jsonify({"error": "cups requerido"}), 400

        try:
            lookup = collect_sips_data(cups, settings)
        except Exception as exc:  # noqa: BLE001
            logger.exception("SIPS lookup failed for CUPS %s", cups)
            return jsonify({"error": str(exc)}), 500

        if not lookup.found:
            return jsonify({"ok": False, "reason": lookup.reason, "debug": lookup.debug}), 404
        return jsonify([lookup.result])

    @app.route("/health", methods=["GET"])
    def health():
        return jsonify({"status": "ok"})

    return app


if __name__ == "__main__":
    create_app().run(host="0.0.0.0", port=8080)
