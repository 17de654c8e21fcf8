# mediaguard/logging_setup.py
import logging
import json
import time
from flask import has_request_context, request

# extra={...} keys copied into the JSON line
EXTRA_FIELDS = ("job_id", "model", "status", "op", "attempt", "delay_seconds")


class JsonRequestFormatter(logging.Formatter):
    def format(self, record):
        # health checks are polled constantly
        if has_request_context() and request.path == "/healthz":
            return ""

        data = {
            "ts": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(record.created)),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }

        for key in EXTRA_FIELDS:
            if hasattr(record, key):
                data[key] = getattr(record, key)

        if has_request_context():
            data.update({
                "method": request.method,
                "path": request.path,
                "remote_addr": request.headers.get("X-Forwarded-For", request.remote_addr),
                "request_id": request.headers.get("X-Request-ID"),
            })

        if record.exc_info:
            data["exc_info"] = self.formatException(record.exc_info)

        return json.dumps(data, ensure_ascii=False, default=str)


def setup_logging(app=None, level=logging.INFO):
    root = logging.getLogger()
    root.setLevel(level)

    # drop handlers left over from a reload
    for h in list(root.handlers):
        root.removeHandler(h)

    h = logging.StreamHandler()
    h.setFormatter(JsonRequestFormatter())
    root.addHandler(h)

    if app:
        app.logger.handlers = [h]
        app.logger.setLevel(level)
        app.logger.propagate = False
