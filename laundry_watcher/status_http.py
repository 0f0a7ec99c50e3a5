import json
import urllib.parse as urlparse
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Tuple

from .utils import now_iso, tprint

DEFAULT_STATS_DAYS = 7


class StatusServer(ThreadingHTTPServer):
    daemon_threads = True

    def __init__(self, bind: Tuple[str, int], engine):
        super().__init__(bind, StatusHandler)
        self.engine = engine


class StatusHandler(BaseHTTPRequestHandler):
    def _cors(self):
        self.send_header('Access-Control-Allow-Origin', '*')
        self.send_header('Access-Control-Allow-Methods', 'GET, OPTIONS')
        self.send_header('Access-Control-Allow-Headers', 'Content-Type')

    def _send_json(self, obj, code=200):
        raw = json.dumps(obj, ensure_ascii=False).encode("utf-8")
        self.send_response(code)
        self.send_header("Content-Type", "application/json; charset=utf-8")
        self.send_header("Content-Length", str(len(raw)))
        self._cors()
        self.end_headers()
        self.wfile.write(raw)

    def do_GET(self):
        engine = self.server.engine
        parsed = urlparse.urlparse(self.path)
        if parsed.path == "/api/laundry-status":
            self._send_json(engine.get_machines())
        elif parsed.path == "/api/stats":
            query = urlparse.parse_qs(parsed.query)
            try:
                days = int(query.get("days", [DEFAULT_STATS_DAYS])[0])
                stats = engine.get_stats(days)
            except ValueError as e:
                self._send_json({"error": f"bad 'days' parameter: {e}"}, code=400)
                return
            self._send_json({"ts": now_iso(), "days": days, "stats": stats})
        elif parsed.path == "/api/debug/mqtt":
            self._send_json(engine.get_debug_status())
        elif parsed.path == "/health":
            self._send_json({"status": "ok", "machines": len(engine.machines)})
        else:
            self._send_json({"error": "not found"}, code=404)

    def do_OPTIONS(self):
        # preflight CORS
        self.send_response(200)
        self._cors()
        self.end_headers()

    def log_message(self, fmt, *args):
        pass


def start_status_http_server(bind: Tuple[str, int], engine):
    host, port = bind
    httpd = StatusServer((host, port), engine)
    tprint(f"[boot] status http server on http://{host}:{httpd.server_address[1]}/api/laundry-status")
    httpd.serve_forever()
