import atexit
import logging

from flask import Flask, Response, jsonify, request

from events import WebhookPayloadError, parse_events
from ingest import EventIngestor
from jobs import RankingScheduler
from line_api import LineClient
from logger import setup_logging
from ranking import Notifier, RankingAggregator
from settings import Settings
from store import CounterStore

logger = logging.getLogger(__name__)


def create_app(settings: Settings | None = None, store: CounterStore | None = None, line=None, start_scheduler: bool = True) -> Flask:
    settings = settings or Settings.from_env()
    setup_logging(settings.log_level, settings.log_dir)

    if store is None:
        store = CounterStore(settings.database_url)
    store.init_schema()

    if line is None:
        line = LineClient(settings.channel_token, settings.channel_secret, timeout=settings.http_timeout)

    ingestor = EventIngestor(store, line, settings.trigger_keyword, settings.tz)
    aggregator = RankingAggregator(store, Notifier(line))
    scheduler = RankingScheduler(store, aggregator, settings)

    app = Flask(__name__)
    app.config["SETTINGS"] = settings
    app.extensions["counter_bot"] = {
        "store": store,
        "line": line,
        "ingestor": ingestor,
        "aggregator": aggregator,
        "scheduler": scheduler,
    }

    # -------- Web Routes --------

    @app.route("/webhook", methods=["POST"])
    def webhook():
        raw_body = request.get_data() or b""
        valid, reason = line.verify_signature(raw_body, request.headers.get("X-Line-Signature"))
        if not valid:
            logger.warning("Rejected webhook: %s", reason)
            return Response(f"Unauthorized: {reason}", status=401)

        try:
            events = parse_events(request.get_json(force=True, silent=True))
        except WebhookPayloadError as e:
            logger.error("Malformed webhook body: %s", e)
            return Response("Internal Server Error", status=500)

        logger.debug("Webhook batch of %d events", len(events))
        try:
            counted = ingestor.handle_batch(events)
        except Exception:
            logger.exception("Webhook batch failed")
            return Response("Internal Server Error", status=500)

        if counted:
            logger.info("Webhook batch: %d/%d events counted", counted, len(events))
        return Response("OK", status=200)

    @app.route("/healthz", methods=["GET"])
    def healthz():
        ok = store.ping()
        body = {"ok": ok, "keyword": settings.trigger_keyword, "retention_days": settings.retention_days}
        return jsonify(body), (200 if ok else 503)

    if start_scheduler:
        scheduler.start()
        atexit.register(scheduler.shutdown)

    return app


if __name__ == "__main__":
    settings = Settings.from_env()
    app = create_app(settings)
    logger.info("Counter bot listening on %s", settings.port)
    app.run(host="0.0.0.0", port=settings.port)
