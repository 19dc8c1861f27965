from __future__ import annotations
import logging
import threading
from typing import List, Optional

import orjson
from flask import Flask, Response, current_app, jsonify, request

from ..config import CFG
from ..errors import WireError
from ..models import ConnKey, Marker
from ..resolver.wire import key_from_wire
from .ui import render_html

logger = logging.getLogger(__name__)

def dumps(obj) -> str:
    return orjson.dumps(obj).decode()

def _json(obj, status: int = 200) -> Response:
    return Response(dumps(obj), status=status, mimetype="application/json")

def _bad_request(msg: str) -> Response:
    return _json({"ok": False, "error": msg}, status=400)

ROW_FIELDS = ("proto", "laddr", "lport", "raddr", "rport", "state", "pid", "name", "user")

def row_matches(row: dict, needle: str) -> bool:
    if not needle:
        return True
    needle = needle.lower()
    return any(needle in str(row.get(f) if row.get(f) is not None else "").lower() for f in ROW_FIELDS)

def _rows(data) -> List[dict]:
    return [rec.to_row() for rec in sorted(data.values(), key=lambda r: r.key)]

class ConnectionView:
    """Presentation-side state: pulls the tracker's mapping when notified.

    The tracker calls ``on_update`` from its polling thread; HTTP handlers
    read the cached rows.
    """

    def __init__(self, tracker):
        self.tracker = tracker
        self._lock = threading.Lock()
        self.version = 0
        self.rows: Optional[List[dict]] = None
        self.fatal: Optional[str] = None
        tracker.register_update_callback(self.on_update)
        tracker.register_failure_callback(self.on_failure)

    def on_update(self) -> None:
        # read and store under one lock so an older copy never replaces a newer one
        with self._lock:
            data = self.tracker.get_current_data()
            if data is None:
                return
            self.rows = _rows(data)
            self.version += 1

    def on_failure(self, err) -> None:
        logger.error("connection tracking stopped: %s", err)
        with self._lock:
            self.fatal = str(err)

    def current(self, needle: str = "") -> dict:
        with self._lock:
            rows = self.rows
            version = self.version
            fatal = self.fatal
        if rows is not None and needle:
            rows = [r for r in rows if row_matches(r, needle)]
        return {"version": version, "initialized": rows is not None,
                "rows": rows or [], "fatal": fatal, "status": self.tracker.status()}

def _flag(body: Optional[dict], name: str) -> Optional[bool]:
    if not isinstance(body, dict) or not isinstance(body.get(name), bool):
        return None
    return body[name]

def create_app(cfg: CFG, tracker) -> Flask:
    app = Flask(__name__)
    view = ConnectionView(tracker)

    @app.get("/")
    def index():
        return Response(render_html(cfg.udp_enabled), mimetype="text/html")

    @app.get("/api/connections")
    def api_connections():
        return _json(view.current(request.args.get("filter", "").strip()))

    @app.get("/api/status")
    def api_status():
        return _json(tracker.status())

    @app.post("/api/pause")
    def api_pause():
        paused = _flag(request.get_json(silent=True), "paused")
        if paused is None:
            return _bad_request("expected {\"paused\": true|false}")
        tracker.set_paused(paused)
        return jsonify({"ok": True, "paused": tracker.is_paused()})

    @app.post("/api/capture")
    def api_capture():
        capturing = _flag(request.get_json(silent=True), "capturing")
        if capturing is None:
            return _bad_request("expected {\"capturing\": true|false}")
        tracker.set_capturing(capturing)
        return jsonify({"ok": True, "capturing": tracker.is_capturing()})

    @app.post("/api/resolve_owners")
    def api_resolve_owners():
        enabled = _flag(request.get_json(silent=True), "enabled")
        if enabled is None:
            return _bad_request("expected {\"enabled\": true|false}")
        tracker.set_resolve_owners(enabled)
        current_app.logger.info("owner resolution %s", "requested" if enabled else "disabled")
        return jsonify({"ok": True, "resolve_owners": tracker.resolve_owners_enabled()})

    @app.post("/api/delete")
    def api_delete():
        body = request.get_json(silent=True)
        if not isinstance(body, dict):
            return _bad_request("expected a JSON object")
        if tracker.is_capturing():
            return _json({"ok": False, "error": "capture is on", "removed": 0}, status=409)
        keys: List[ConnKey] = []
        if body.get("all_stale"):
            data = tracker.get_current_data() or {}
            keys = [k for k, r in data.items() if r.marker is Marker.PENDING_REMOVAL]
        else:
            try:
                keys = [key_from_wire(k) for k in body.get("keys") or []]
            except WireError as e:
                return _bad_request(str(e))
        removed = tracker.remove(keys)
        if removed:
            view.on_update()
        return jsonify({"ok": True, "removed": len(removed)})

    @app.get("/api/export")
    def api_export():
        rows = _rows(tracker.export_data())
        resp = _json({"rows": rows, "count": len(rows)})
        resp.headers["Content-Disposition"] = "attachment; filename=connections.json"
        return resp

    return app
