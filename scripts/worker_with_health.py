"""
RQ worker wrapper with HTTP health check server.

Starts an RQ worker on the cas_parsing queue as a subprocess and exposes a
minimal HTTP server on PORT for the platform healthcheck.

GET /health -> 200 while worker process is running, 503 if it exits
"""
import http.server
import os
import shutil
import signal
import subprocess
import sys
import threading
import time


HEALTH_PORT = int(os.environ.get("PORT", os.environ.get("HEALTH_PORT", "8001")))
REDIS_URL = os.environ.get("REDIS_URL", "redis://localhost:6379")
QUEUES = os.environ.get("RQ_QUEUES", "cas_parsing").split(",")
STARTUP_GRACE_SECONDS = 30

_worker_proc: "subprocess.Popen | None" = None
_startup_time: float = 0.0


def check_worker_alive() -> bool:
    """Return True during grace period or while worker process is running."""
    if _worker_proc is None or (time.time() - _startup_time) < STARTUP_GRACE_SECONDS:
        return True
    return _worker_proc.poll() is None


class HealthHandler(http.server.BaseHTTPRequestHandler):
    def do_GET(self):
        if self.path in ("/health", "/"):
            alive = check_worker_alive()
            code = 200 if alive else 503
            body = b'{"status":"ok"}' if alive else b'{"status":"unhealthy"}'
            self.send_response(code)
            self.send_header("Content-Type", "application/json")
            self.end_headers()
            self.wfile.write(body)
        else:
            self.send_response(404)
            self.end_headers()

    def log_message(self, format, *args):
        pass


def start_health_server():
    server = http.server.HTTPServer(("0.0.0.0", HEALTH_PORT), HealthHandler)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    print(f"Health server listening on :{HEALTH_PORT}", flush=True)


def build_worker_command() -> list:
    rq_bin = shutil.which("rq") or "rq"
    return [
        rq_bin,
        "worker",
        "--url", REDIS_URL,
        # structlog is configured when the first job builds its service
        "--logging_level", os.environ.get("LOG_LEVEL", "INFO").upper() or "INFO",
        *[queue.strip() for queue in QUEUES if queue.strip()],
    ]


def main():
    global _worker_proc, _startup_time
    start_health_server()

    proc = subprocess.Popen(build_worker_command())
    _worker_proc = proc
    _startup_time = time.time()

    def shutdown(signum, frame):
        # RQ finishes the current job on the first SIGTERM (warm shutdown)
        proc.terminate()
        try:
            proc.wait(timeout=30)
        except subprocess.TimeoutExpired:
            proc.kill()
        sys.exit(0)

    signal.signal(signal.SIGTERM, shutdown)
    signal.signal(signal.SIGINT, shutdown)

    sys.exit(proc.wait())


if __name__ == "__main__":
    main()
