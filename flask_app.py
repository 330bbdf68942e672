import logging

from flask import Flask, jsonify, request

import config
from workflows.call_sync import SalesforceClient, SyncInProgress, SyncScheduler, get_reconciler

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = Flask(__name__)
scheduler = None


def start_scheduler():
    """Start the in-process sync timer (once per process)."""
    global scheduler
    if scheduler is None:
        reconciler = get_reconciler()
        scheduler = SyncScheduler(reconciler.run_sync, interval=config.CALL_SYNC_INTERVAL_MINUTES * 60)
    scheduler.start()
    return scheduler


@app.route('/health', methods=['GET'])
def health_check():
    """Health check endpoint."""
    return jsonify({
        "ok": True,
        "scheduler_running": bool(scheduler and scheduler.is_running()),
    }), 200


# --- RingCentral Call Sync Routes ---
@app.route('/sync/ringcentral', methods=['POST', 'GET'])
def sync_ringcentral():
    """
    Trigger a call sync pass manually.

    Returns the full pass summary. 409 if a pass is already running.
    """
    try:
        summary = get_reconciler().run_sync()
        if summary.dropped:
            status = 409
        elif summary.ok:
            status = 200
        else:
            status = 500
        return jsonify(summary.to_dict()), status
    except Exception as e:
        logger.error(f"Manual sync failed: {e}", exc_info=True)
        return jsonify({"ok": False, "error": str(e)}), 500


@app.route('/test/ringcentral/mapping', methods=['GET'])
def test_ringcentral_mapping():
    """
    Preview owner and extension mapping for recent calls, without writing.

    Query params:
        limit: Number of calls to inspect (default: 5)
    """
    try:
        limit = int(request.args.get('limit', 5))
        mapped = get_reconciler().preview_mappings(limit=limit)
        return jsonify({"ok": True, "summary": {"totalCalls": len(mapped)}, "mappedCalls": mapped}), 200
    except SyncInProgress as e:
        return jsonify({"ok": False, "error": str(e)}), 409
    except Exception as e:
        logger.error(f"Mapping test failed: {e}")
        return jsonify({"ok": False, "error": str(e), "details": getattr(e, "details", None)}), 500


@app.route('/auth/sf/jwt/test', methods=['POST'])
def test_salesforce_jwt():
    """Acquire a Salesforce token and return a truncated preview of it."""
    try:
        token = SalesforceClient().request_token()
        access_token = token.get("access_token") or ""
        return jsonify({
            "ok": True,
            "token_type": token.get("token_type"),
            "instance_url": token.get("instance_url"),
            "scope": token.get("scope"),
            "id": token.get("id"),
            "access_token_preview": access_token[:36] + "...(truncated)",
        }), 200
    except Exception as e:
        logger.error(f"Salesforce JWT test failed: {e}")
        return jsonify({"ok": False, "error": str(e), "details": getattr(e, "details", None)}), 500


if config.CALL_SYNC_SCHEDULER_ENABLED and config.CALL_SYNC_INTERVAL_MINUTES > 0:
    start_scheduler()

if __name__ == '__main__':
    app.run(host='0.0.0.0', port=config.PORT, debug=False)
