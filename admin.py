import threading
import uuid
from datetime import datetime, timezone
from zoneinfo import ZoneInfo

from flask import Flask, Response, jsonify, redirect, request

from config import DEFAULT_ORDER_STATUS
from db import StateDB, SqliteTokenStore
from exceptions import MissingColumnError, RemoteCallError, TokenUnavailableError, ValidationError
from models import FailedShipment, UpdateProgress
from services.export import failure_csv
from services.ingestion import read_shipment_upload
from services.price_updater import PriceUpdateQueue, product_from_dict
from app import build_client, drain_price_queue, match_against_orders, process_shipments
from logger import get_logger

log = get_logger("admin")

KST = ZoneInfo("Asia/Seoul")

def _to_dt_utc(value):
    if value is None:
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        dt = datetime.fromisoformat(str(value).strip().replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)

def format_kst(value, fmt="%Y-%m-%d %H:%M"):
    dt_utc = _to_dt_utc(value)
    if not dt_utc:
        return ""
    return dt_utc.astimezone(KST).strftime(fmt)

def duration_s(start_ts, end_ts):
    if not start_ts or not end_ts:
        return None
    return int((_to_dt_utc(end_ts) - _to_dt_utc(start_ts)).total_seconds())

def _run_json(run: dict) -> dict:
    out = dict(run)
    out["start_kst"] = format_kst(run.get("start_ts"))
    out["duration_s"] = duration_s(run.get("start_ts"), run.get("end_ts"))
    return out

def _progress_json(p: UpdateProgress) -> dict:
    return {
        "total": p.total,
        "completed": p.completed,
        "failed": p.failed,
        "current_product": p.current_entity,
        "current_step": p.current_step,
        "percentage": p.percentage,
        "estimated_remaining_minutes": p.estimated_remaining_minutes,
        "running": p.running,
        "errors": [
            {
                "product": e.entity_label,
                "step": e.step_label,
                "error": e.error_message,
                "timestamp": e.timestamp.isoformat(),
            }
            for e in p.errors
        ],
    }

def _match_json(result) -> dict:
    return {
        "statistics": result.statistics,
        "matched": [
            {
                "row": m.source_row,
                "order_id": m.order_id,
                "receiver_name": m.receiver_name,
                "receiver_address": m.receiver_address,
                "tracking_no": m.tracking_no,
                "match_type": m.match_type,
                "method": m.method,
            }
            for m in result.matched
        ],
        "failures": [
            {
                "row": f.source_row,
                "tracking_no": f.tracking_no,
                "shipment_name": f.shipment_name,
                "shipment_address": f.shipment_address,
                "reason": f.reason,
                "possible_split_orders": f.possible_split_order_ids,
            }
            for f in result.failures
        ],
    }

def _uploaded_shipments():
    upload = request.files.get("file")
    if upload is None or not upload.filename:
        raise ValidationError("파일을 선택해주세요.")
    return upload.filename, read_shipment_upload(upload.filename, upload.read())

def create_app(state_db: StateDB = None, client=None, price_queue: PriceUpdateQueue = None) -> Flask:
    state_db = state_db or StateDB()
    state_db.init()
    client = client or build_client(state_db)
    price_queue = price_queue or PriceUpdateQueue(client)
    token_store = SqliteTokenStore(state_db)

    app = Flask(__name__)
    app.config["STATE_DB"] = state_db
    app.config["CAFE24_CLIENT"] = client
    app.config["PRICE_QUEUE"] = price_queue

    # ---------- errors ----------
    @app.errorhandler(MissingColumnError)
    def missing_column(e):
        return jsonify({"error": str(e), "missing": e.missing, "headers": e.headers}), 400

    @app.errorhandler(ValidationError)
    def invalid(e):
        return jsonify({"error": str(e)}), 400

    @app.errorhandler(TokenUnavailableError)
    def no_token(e):
        return jsonify({"error": str(e)}), 401

    @app.errorhandler(RemoteCallError)
    def remote_failed(e):
        return jsonify({
            "error": str(e),
            "status": e.status,
            "details": e.details,
        }), 502

    # ---------- runs ----------
    @app.route("/")
    def dashboard():
        limit = request.args.get("limit", default=20, type=int)
        return jsonify({"runs": [_run_json(r) for r in state_db.recent_runs(limit)]})

    @app.route("/run/<run_id>")
    def run_detail(run_id):
        run = state_db.get_run(run_id)
        if run is None:
            return jsonify({"error": f"run {run_id} not found"}), 404
        return jsonify({"run": _run_json(run), "items": state_db.run_items(run_id)})

    @app.route("/run/<run_id>/failures.csv")
    def run_failures_csv(run_id):
        items = state_db.run_items(run_id, status="FAILED")
        body = failure_csv(
            FailedShipment(i["order_id"] or "", i["tracking_no"] or "", i["error"] or "") for i in items
        )
        return Response(
            body,
            mimetype="text/csv",
            headers={"Content-Disposition": f'attachment; filename="failed_shipments_{run_id[:8]}.csv"'},
        )

    # ---------- shipments ----------
    def _order_filter():
        return {
            "start_date": request.form.get("start_date") or None,
            "end_date": request.form.get("end_date") or None,
            "order_status": request.form.get("order_status") or DEFAULT_ORDER_STATUS,
        }

    @app.route("/shipments/preview", methods=["POST"])
    def shipments_preview():
        _, shipments = _uploaded_shipments()
        result = match_against_orders(client, shipments, **_order_filter())
        return jsonify(_match_json(result))

    @app.route("/shipments/register", methods=["POST"])
    def shipments_register():
        file_name, shipments = _uploaded_shipments()
        dry_run = (request.form.get("dry_run") or "").lower() in ("1", "true", "yes")
        report = process_shipments(client, state_db, shipments, file_name, dry_run=dry_run, **_order_filter())
        return jsonify(report)

    # ---------- prices ----------
    def _start_worker(target, *args):
        t = threading.Thread(target=target, args=args, daemon=True, name="price-update")
        t.start()
        return t

    @app.route("/prices/start", methods=["POST"])
    def prices_start():
        if price_queue.running:
            return jsonify({"error": "price update already running"}), 409
        payload = request.get_json(silent=True) or {}
        try:
            products = [product_from_dict(d) for d in payload.get("products") or []]
        except (KeyError, TypeError, ValueError) as e:
            raise ValidationError(f"Invalid product payload: {e}") from e
        if not products:
            raise ValidationError("No products to update.")

        # enqueue synchronously so /prices/progress sees the total straight away
        price_queue.enqueue_products(products)
        _start_worker(drain_price_queue, price_queue)
        log.info(f"Price update started for {len(products)} product(s)")
        return jsonify({"started": True, "steps": len(products) * 4}), 202

    @app.route("/prices/stop", methods=["POST"])
    def prices_stop():
        price_queue.stop()
        return jsonify(_progress_json(price_queue.progress()))

    @app.route("/prices/resume", methods=["POST"])
    def prices_resume():
        if price_queue.running:
            return jsonify({"error": "price update already running"}), 409
        if not price_queue.pending_items():
            return jsonify({"error": "nothing to resume"}), 409
        _start_worker(drain_price_queue, price_queue)
        return jsonify({"resumed": True, "pending": len(price_queue.pending_items())}), 202

    @app.route("/prices/progress")
    def prices_progress():
        return jsonify(_progress_json(price_queue.progress()))

    # ---------- auth ----------
    @app.route("/auth/login")
    def auth_login():
        return redirect(client.auth_url(uuid.uuid4().hex[:8]))

    @app.route("/auth/callback")
    def auth_callback():
        code = request.args.get("code")
        if not code:
            return jsonify({"error": request.args.get("error") or "missing code"}), 400
        token = client.exchange_code(code)
        return jsonify({"authenticated": True, "expires_at": token.expires_at})

    @app.route("/auth/status")
    def auth_status():
        token = token_store.get_token()
        if token is None:
            return jsonify({"authenticated": False})
        return jsonify({
            "authenticated": True,
            "expired": token.is_expired(datetime.now(timezone.utc).timestamp()),
            "expires_at": token.expires_at,
        })

    @app.route("/auth/logout", methods=["POST"])
    def auth_logout():
        token_store.clear()
        return jsonify({"authenticated": False})

    return app

if __name__ == "__main__":
    # For local dev only; serve admin:create_app() under a WSGI server elsewhere
    create_app().run(host="0.0.0.0", port=5050, debug=True)
