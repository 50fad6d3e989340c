"""Main Flask API for Guardião.

Run: python -m guardiao.api
"""

import os
import logging
from flask import Flask, Response, request, jsonify, abort
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
import redis as redis_lib
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.exceptions import HTTPException

from guardiao import __version__
from guardiao.alerts import (
    AlertNotFound, acknowledge, export_alerts_csv, get_alert, list_alerts,
    materialize_link_check, materialize_manual, materialize_report, materialize_text_analysis,
)
from guardiao.app.normalize import InvalidInput, InvalidURL
from guardiao.app.scanner import check_link, scan_text
from guardiao.app.text_heuristics import EmptyInput
from guardiao.app.threat_intel import build_providers
from guardiao.config import Settings
from guardiao.db import Store

logger = logging.getLogger("api")

MAX_PAGE_SIZE = 200


def _make_limiter(app: Flask, settings: Settings) -> Limiter:
    # Rate limiter: prefer Redis storage in production when REDIS_URL is set
    if settings.redis_url:
        try:
            redis_lib.from_url(settings.redis_url).ping()
            limiter = Limiter(key_func=get_remote_address, app=app,
                              default_limits=[settings.rate_limit], storage_uri=settings.redis_url)
            logger.info("Using Redis at %s for rate limiting", settings.redis_url)
            return limiter
        except redis_lib.exceptions.RedisError:
            logger.exception("Failed to connect to Redis, falling back to in-memory limiter")
    return Limiter(key_func=get_remote_address, app=app, default_limits=[settings.rate_limit])


def _paging():
    try:
        limit = int(request.args.get("limit", 50))
        offset = int(request.args.get("offset", 0))
    except ValueError:
        abort(400, description="limit/offset must be integer")
    return min(MAX_PAGE_SIZE, max(1, limit)), max(0, offset)


def create_app(settings: Settings = None, store: Store = None, providers=None) -> Flask:
    settings = settings or Settings.from_env()
    logging.basicConfig(level=settings.log_level)

    if store is None:
        store = Store(settings.database_url)
    store.init_db()
    if providers is None:
        providers = build_providers(settings)

    app = Flask(__name__)
    app.config["GUARDIAO_SETTINGS"] = settings
    limiter = _make_limiter(app, settings)

    if settings.api_key:
        logger.info("API key enabled")

    @app.before_request
    def require_api_key():
        if not settings.api_key or not request.path.startswith("/v1/"):
            return None
        key = request.headers.get("X-API-Key") or request.args.get("api_key")
        if not key or key != settings.api_key:
            abort(401, description="Invalid or missing API key")
        return None

    # -------------------------------------
    # Error mapping
    # -------------------------------------
    @app.errorhandler(InvalidInput)
    def invalid_input(e):
        return jsonify({"error": e.code, "detail": str(e)}), 400

    @app.errorhandler(AlertNotFound)
    def alert_not_found(e):
        return jsonify({"error": "not_found"}), 404

    @app.errorhandler(SQLAlchemyError)
    def store_failure(e):
        logger.exception("Store failure: %s", e)
        return jsonify({"error": "internal_error"}), 500

    @app.errorhandler(HTTPException)
    def http_error(e):
        name = e.name.lower().replace(" ", "_")
        return jsonify({"error": name, "detail": e.description}), e.code

    # -------------------------------------
    # Routes
    # -------------------------------------
    @app.route("/health", methods=["GET"])
    @limiter.exempt
    def health():
        return jsonify({"status": "ok", "version": __version__})

    @app.route("/v1/config/thresholds", methods=["GET"])
    def config_thresholds():
        return jsonify({
            "medium_min": settings.score_medium_min,
            "high_min": settings.score_high_min,
            "text_alert_min_hits": settings.text_alert_min_hits,
        })

    @app.route("/v1/links/check", methods=["POST"])
    @limiter.limit("30 per minute")
    def links_check():
        data = request.get_json(silent=True) or {}
        if not data.get("url"):
            raise InvalidURL("missing 'url' in JSON body")

        check = check_link(data["url"], settings, providers)
        saved = store.save_link_check(check["url"], check["is_safe"], check["score"],
                                      check["severity"], check["reasons"], check["sources"])
        alert = materialize_link_check(store, check, link_check_id=saved["id"])

        return jsonify(dict(check, saved_id=saved["id"], alert_id=alert["id"] if alert else None))

    @app.route("/v1/reports", methods=["POST"])
    @limiter.limit("30 per minute")
    def create_report():
        data = request.get_json(silent=True) or {}
        check = None
        if data.get("url"):
            check = check_link(data["url"], settings, providers)

        evidence = data.get("evidence")
        report = store.save_report(
            url=check["url"] if check else None,
            description=data.get("description") or None,
            reporter_hash=data.get("reporter_hash") or None,
            evidence=evidence if isinstance(evidence, list) else None,
        )
        alert = materialize_report(store, settings, report, check)

        resp = dict(report, alert_id=alert["id"] if alert else None)
        if check:
            resp.update(score=check["score"], severity=check["severity"])
        return jsonify(resp), 201

    @app.route("/v1/reports/<int:report_id>", methods=["GET"])
    def get_report(report_id: int):
        report = store.get_report(report_id)
        if not report:
            return jsonify({"error": "not_found"}), 404
        return jsonify(report)

    @app.route("/v1/messages", methods=["POST"])
    def create_message():
        data = request.get_json(silent=True) or {}
        body = data.get("body")
        if not body or not str(body).strip():
            raise EmptyInput("missing 'body' in JSON body")
        return jsonify(store.save_message(str(body), sender=data.get("sender"))), 201

    @app.route("/v1/messages", methods=["GET"])
    def list_messages():
        limit, offset = _paging()
        rows = store.list_messages(limit=limit, offset=offset)
        return jsonify({"count": len(rows), "rows": rows})

    @app.route("/v1/messages/<int:message_id>", methods=["GET"])
    def get_message(message_id: int):
        message = store.get_message(message_id)
        if not message:
            return jsonify({"error": "not_found"}), 404
        return jsonify(message)

    def _analyze(message):
        analysis = scan_text(message["body"], settings, providers)
        alert = materialize_text_analysis(store, settings, analysis, message_id=message["id"])
        # separate write; a crash in between leaves the message unprocessed
        store.mark_message_processed(message["id"])
        return dict(analysis.to_dict(), message_id=message["id"],
                    alert_id=alert["id"] if alert else None)

    @app.route("/v1/messages/analyze", methods=["POST"])
    @limiter.limit("30 per minute")
    def analyze_text_message():
        data = request.get_json(silent=True) or {}
        text = data.get("text")
        if not text or not str(text).strip():
            raise EmptyInput("missing 'text' in JSON body")
        message = store.save_message(str(text), sender=data.get("sender"))
        return jsonify(_analyze(message))

    @app.route("/v1/messages/<int:message_id>/analyze", methods=["POST"])
    @limiter.limit("30 per minute")
    def analyze_stored_message(message_id: int):
        message = store.get_message(message_id)
        if not message:
            return jsonify({"error": "not_found"}), 404
        return jsonify(_analyze(message))

    @app.route("/v1/messages/<int:message_id>/classify", methods=["POST"])
    def classify_message(message_id: int):
        data = request.get_json(silent=True) or {}
        message = store.get_message(message_id)
        if not message:
            return jsonify({"error": "not_found"}), 404
        try:
            alert = materialize_manual(store, str(data.get("verdict", "")).lower(), message_id=message_id)
        except ValueError as e:
            return jsonify({"error": "invalid_verdict", "detail": str(e)}), 400
        store.mark_message_processed(message_id)
        return jsonify(alert), 201

    @app.route("/v1/alerts", methods=["GET"])
    def alerts_index():
        limit, offset = _paging()
        try:
            rows = list_alerts(store, status=request.args.get("status", "new"),
                               severity=request.args.get("severity"), q=request.args.get("q"),
                               limit=limit, offset=offset)
        except ValueError as e:
            return jsonify({"error": "invalid_filter", "detail": str(e)}), 400
        return jsonify({"count": len(rows), "rows": rows})

    @app.route("/v1/alerts/export.csv", methods=["GET"])
    def alerts_export():
        try:
            data = export_alerts_csv(store, status=request.args.get("status", "all"),
                                     severity=request.args.get("severity"), q=request.args.get("q"))
        except ValueError as e:
            return jsonify({"error": "invalid_filter", "detail": str(e)}), 400
        return Response(data, mimetype="text/csv",
                        headers={"Content-Disposition": "attachment; filename=alerts.csv"})

    @app.route("/v1/alerts/<int:alert_id>", methods=["GET"])
    def alert_detail(alert_id: int):
        return jsonify(get_alert(store, alert_id))

    @app.route("/v1/alerts/<int:alert_id>/ack", methods=["PATCH", "POST"])
    def alert_ack(alert_id: int):
        return jsonify(acknowledge(store, alert_id))

    return app


if __name__ == "__main__":
    create_app().run(host="0.0.0.0", port=int(os.getenv("PORT", 3000)), debug=False)
