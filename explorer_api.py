"""
Libra Explorer - HTTP and WebSocket adapter
Serves the sync core's read/refresh surface and pushes store updates to clients
"""

from __future__ import annotations

import asyncio
import json
import logging
import threading
import time
from typing import Any, Callable, Dict, Optional, Set

from flask import Flask, jsonify, request
from flask_cors import CORS
from flask_sock import Sock
from flasgger import Swagger

from cache import CacheEntry
from config import config
from errors import InvalidAddressError
from explorer_core import ExplorerCore, UnknownDomainError, serialize
from stores import ACCOUNT
from synchronizer import ReadResult

# Configure logging
logging.basicConfig(
    level=getattr(logging, config.LOG_LEVEL),
    format=config.LOG_FORMAT
)
logger = logging.getLogger(__name__)


# ==================== CORE RUNNER ====================

class CoreRunner:
    """
    Runs an ExplorerCore on a private asyncio loop in a daemon thread.

    Flask handlers run on their own threads and hand coroutines to the loop
    with run_coroutine_threadsafe, so every store write and timer lives on
    the single loop thread.
    """

    def __init__(self, core: ExplorerCore, timeout: float = 30.0):
        self.core = core
        self.timeout = timeout
        self.loop = asyncio.new_event_loop()
        self.thread: Optional[threading.Thread] = None
        self.lock = threading.RLock()
        self._unsubscribe: Optional[Callable[[], None]] = None

    @property
    def started(self) -> bool:
        return self.thread is not None and self.thread.is_alive()

    def _run_loop(self) -> None:
        asyncio.set_event_loop(self.loop)
        self.loop.run_forever()

    def start(self, wait: bool = False) -> None:
        """Start the loop thread and initialize the SDK session"""
        with self.lock:
            if self.started:
                return
            self.thread = threading.Thread(target=self._run_loop, name="explorer-core", daemon=True)
            self.thread.start()
            self._unsubscribe = self.core.subscribe(on_store_update)

        future = asyncio.run_coroutine_threadsafe(self.core.start(), self.loop)
        if wait:
            future.result(self.timeout)

    def run(self, coro) -> Any:
        """Run a coroutine on the core loop and wait for its result"""
        self.start()
        return asyncio.run_coroutine_threadsafe(coro, self.loop).result(self.timeout)

    def call(self, func: Callable, *args) -> Any:
        """Run a plain function on the core loop thread"""

        async def invoke():
            return func(*args)

        return self.run(invoke())

    def stop(self) -> None:
        with self.lock:
            if not self.started:
                return
            self.call(self.core.stop)
            if self._unsubscribe:
                self._unsubscribe()
            self.loop.call_soon_threadsafe(self.loop.stop)
            self.thread.join(timeout=5)
            self.thread = None


# ==================== FLASK APP ====================

app = Flask(__name__)
CORS(app, origins=config.CORS_ORIGINS)
sock = Sock(app)

# ==================== SWAGGER CONFIGURATION ====================

swagger_config = {
    "headers": [],
    "specs": [
        {
            "endpoint": 'apispec',
            "route": '/apispec.json',
            "rule_filter": lambda rule: True,
            "model_filter": lambda tag: True,
        }
    ],
    "static_url_path": "/flasgger_static",
    "swagger_ui": True,
    "specs_route": "/api/docs"
}

swagger_template = {
    "info": {
        "title": "Libra Explorer API",
        "description": "Cached ledger data for the Open Libra explorer - chain stats, transactions, accounts, vouching and governance views",
        "version": "1.0.0",
    },
    "basePath": "/",
    "schemes": ["https", "http"],
    "tags": [
        {"name": "Health", "description": "Health check endpoints"},
        {"name": "Data", "description": "Cached domain reads"},
        {"name": "Sync", "description": "Refresh and lifecycle control"},
        {"name": "Derived", "description": "Values computed on read"},
    ]
}

swagger = Swagger(app, config=swagger_config, template=swagger_template)

core = ExplorerCore.from_config(config)
runner = CoreRunner(core)

# WebSocket connections for real-time updates
ws_clients: Set[Any] = set()
ws_lock = threading.RLock()


# ==================== HELPERS ====================

def _read_body(result: ReadResult, domain: str, key: Optional[str]) -> Dict[str, Any]:
    return {
        "domain": domain,
        "key": key,
        "payload": serialize(result.payload),
        "is_loading": result.is_loading,
        "error": result.error,
        "is_stale": result.is_stale,
        "is_placeholder": result.is_placeholder,
        "last_updated": result.last_updated,
    }


def _resolve(domain: str, key: Optional[str]):
    """Canonical key for (domain, key), or an error response"""
    try:
        sync = runner.core.synchronizer(domain)
    except UnknownDomainError:
        return None, (jsonify({"error": f"Unknown domain: {domain}"}), 404)
    try:
        return sync.canonical_key(key), None
    except InvalidAddressError as e:
        return None, (jsonify({"error": str(e)}), 400)


def _read(domain: str, key: Optional[str]) -> ReadResult:
    if domain == ACCOUNT:
        return runner.core.read_account(key)
    return runner.core.read(domain, key)


# ==================== DATA ENDPOINTS ====================

@app.route("/api/<domain>", methods=["GET"])
@app.route("/api/<domain>/<key>", methods=["GET"])
def read_domain(domain, key=None):
    """
    Read cached domain data
    ---
    tags:
      - Data
    parameters:
      - name: domain
        in: path
        type: string
        required: true
        description: chain_stats, transactions, transaction, account, account_overlay, vouching, epoch, donations, supply or community_wallets
      - name: key
        in: path
        type: string
        required: false
        description: Address or transaction hash for keyed domains
    responses:
      200:
        description: Cache entry state
        schema:
          type: object
          properties:
            payload:
              type: object
              description: Last good data, null before the first successful fetch
            is_loading:
              type: boolean
            error:
              type: string
              description: Message of the most recent failed fetch
            is_stale:
              type: boolean
            is_placeholder:
              type: boolean
              description: Session is ready but no data has arrived in time
      400:
        description: Invalid address or hash
      404:
        description: Unknown domain
    """
    key, error = _resolve(domain, key)
    if error:
        return error
    return jsonify(_read_body(_read(domain, key), domain, key))


@app.route("/api/<domain>/refresh", methods=["POST"])
@app.route("/api/<domain>/<key>/refresh", methods=["POST"])
def refresh_domain(domain, key=None):
    """
    Refresh domain data
    ---
    tags:
      - Sync
    parameters:
      - name: domain
        in: path
        type: string
        required: true
      - name: key
        in: path
        type: string
        required: false
      - name: body
        in: body
        schema:
          type: object
          properties:
            force:
              type: boolean
              description: Ignore the freshness window
    responses:
      200:
        description: Entry state after the refresh
    """
    key, error = _resolve(domain, key)
    if error:
        return error
    force = bool((request.get_json(silent=True) or {}).get("force", False))
    refreshed = runner.run(runner.core.refresh(domain, key, force=force))
    body = _read_body(_read(domain, key), domain, key)
    body["refreshed"] = refreshed
    return jsonify(body)


@app.route("/api/<domain>/visibility", methods=["POST"])
@app.route("/api/<domain>/<key>/visibility", methods=["POST"])
def set_visibility(domain, key=None):
    """
    Start or stop polling a resource
    ---
    tags:
      - Sync
    parameters:
      - name: body
        in: body
        schema:
          type: object
          properties:
            visible:
              type: boolean
    responses:
      200:
        description: Polling state
    """
    key, error = _resolve(domain, key)
    if error:
        return error
    visible = bool((request.get_json(silent=True) or {}).get("visible", True))
    if visible:
        runner.call(runner.core.on_become_visible, domain, key)
    else:
        runner.call(runner.core.on_become_hidden, domain, key)
    return jsonify({"domain": domain, "key": key, "visible": visible})


@app.route("/api/app-state", methods=["POST"])
def set_app_state():
    """
    Report application lifecycle state
    ---
    tags:
      - Sync
    parameters:
      - name: body
        in: body
        schema:
          type: object
          properties:
            state:
              type: string
              enum: [active, background, inactive]
    responses:
      200:
        description: State accepted
      400:
        description: Unknown state
    """
    state = (request.get_json(silent=True) or {}).get("state", "")
    try:
        runner.run(runner.core.set_app_state(state))
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    return jsonify({"state": state})


@app.route("/api/transactions/load-more", methods=["POST"])
def load_more_transactions():
    """Grow the transaction list by one page and refresh it"""
    refreshed = runner.run(runner.core.load_more_transactions())
    body = _read_body(runner.core.read("transactions"), "transactions", None)
    body["refreshed"] = refreshed
    return jsonify(body)


# ==================== DERIVED ENDPOINTS ====================

@app.route("/api/vouching/<address>/classified", methods=["GET"])
def classified_vouches(address):
    """
    Vouches with expiry status
    ---
    tags:
      - Derived
    parameters:
      - name: address
        in: path
        type: string
        required: true
    responses:
      200:
        description: Given and received vouches sorted for display
    """
    key, error = _resolve("vouching", address)
    if error:
        return error
    return jsonify(_read_body(runner.core.read_vouches(key), "vouching", key))


@app.route("/api/chain_stats/block-time", methods=["GET"])
def block_time():
    """Average block time from the cached transaction list"""
    return jsonify({
        "block_time_ms": runner.core.block_time_ms(),
        "timestamp": time.time()
    })


@app.route("/api/stats", methods=["GET"])
def cache_stats():
    """Session, store and polling statistics"""
    return jsonify(runner.core.get_stats())


# ==================== WEBSOCKET REAL-TIME UPDATES ====================

@sock.route("/api/ws/updates")
def websocket_updates(ws):
    """WebSocket endpoint for real-time updates"""
    with ws_lock:
        ws_clients.add(ws)

    logger.info(f"WebSocket client connected. Total: {len(ws_clients)}")

    try:
        while True:
            # Receive heartbeat
            data = ws.receive()
            if data == "ping":
                ws.send("pong")
    except Exception as e:
        logger.error(f"WebSocket error: {e}")
    finally:
        with ws_lock:
            ws_clients.discard(ws)
        logger.info(f"WebSocket client disconnected. Total: {len(ws_clients)}")


def broadcast_update(update_type: str, data: Dict[str, Any]) -> None:
    """Broadcast update to all WebSocket clients"""
    message = json.dumps({
        "type": update_type,
        "data": data,
        "timestamp": time.time()
    })

    with ws_lock:
        for client in list(ws_clients):
            try:
                client.send(message)
            except Exception as e:
                logger.error(f"Broadcast error: {e}")
                ws_clients.discard(client)


def on_store_update(domain: str, key: str, entry: CacheEntry) -> None:
    """Store observer forwarding entry state changes to WebSocket clients"""
    if not ws_clients:
        return
    broadcast_update("store_update", {
        "domain": domain,
        "key": key,
        "is_loading": entry.is_loading,
        "error": entry.error,
        "last_updated": entry.last_updated,
    })


# ==================== HEALTH CHECK ====================

@app.route("/health", methods=["GET"])
def health_check():
    """
    Health check
    ---
    tags:
      - Health
    responses:
      200:
        description: Health status
        schema:
          type: object
          properties:
            status:
              type: string
              description: Overall health status (healthy/degraded)
            explorer:
              type: string
            node:
              type: object
              properties:
                ready:
                  type: boolean
                  description: Whether the SDK session is ready
                rpc:
                  type: string
                error:
                  type: string
            timestamp:
              type: number
    """
    session = runner.core.session
    ready = session.is_ready
    if not ready and session.last_error:
        logger.warning(f"Ledger connection degraded: {session.last_error}")

    return jsonify({
        "status": "healthy" if ready else "degraded",
        "explorer": "running" if runner.started else "stopped",
        "node": {
            "ready": ready,
            "rpc": config.LIBRA_RPC_URL,
            "error": str(session.last_error) if session.last_error else None,
        },
        "timestamp": time.time()
    }), 200


# ==================== INFO ENDPOINT ====================

@app.route("/", methods=["GET"])
def explorer_info():
    """
    Explorer information
    ---
    tags:
      - Health
    responses:
      200:
        description: Explorer service information
    """
    return jsonify({
        "name": "Libra Explorer",
        "version": "1.0.0",
        "network": config.NETWORK,
        "domains": runner.core.domains,
        "endpoints": {
            "read": "/api/<domain>[/<key>]",
            "refresh": "/api/<domain>[/<key>]/refresh",
            "visibility": "/api/<domain>[/<key>]/visibility",
            "app_state": "/api/app-state",
            "websocket": "/api/ws/updates",
            "health": "/health",
            "swagger_docs": "/api/docs",
            "openapi_spec": "/apispec.json"
        },
        "node_url": config.LIBRA_RPC_URL,
        "timestamp": time.time()
    })


if __name__ == "__main__":
    logger.info("Starting Libra Explorer")
    logger.info(f"Network: {config.NETWORK}")
    logger.info(f"Ledger RPC URL: {config.LIBRA_RPC_URL}")
    logger.info(f"Port: {config.EXPLORER_PORT}")

    runner.start()
    try:
        app.run(
            host=config.EXPLORER_HOST,
            port=config.EXPLORER_PORT,
            debug=config.DEBUG,
            threaded=True
        )
    finally:
        runner.stop()
