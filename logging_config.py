"""
Logging setup for the Conevent API

Development and test runs log plain text; production logs one JSON object
per line so the output can be shipped to a log aggregator as-is.
"""
import asyncio
import json
import logging
import os
import sys
import threading
import time
import traceback
from datetime import datetime, timezone

from fastapi import Request

import settings

logger = logging.getLogger(__name__)

# LogRecord attributes that are not user-supplied `extra` fields
_RESERVED = set(vars(logging.makeLogRecord({}))) | {"message", "asctime"}


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        if record.exc_info and record.exc_info[0]:
            log_data["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "traceback": traceback.format_exception(*record.exc_info),
            }
        for key, value in record.__dict__.items():
            if key not in _RESERVED and not key.startswith("_"):
                log_data[key] = value
        return json.dumps(log_data, default=str)


def setup_logging(level: str = None) -> None:
    root = logging.getLogger()
    if getattr(root, "_conevent_configured", False):
        return

    handler = logging.StreamHandler(sys.stdout)
    if settings.is_production():
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"))

    root.handlers = [handler]
    root.setLevel((level or settings.LOG_LEVEL).upper())
    root._conevent_configured = True


async def log_requests(request: Request, call_next):
    """Middleware writing one access-log line per HTTP request."""
    start = time.perf_counter()
    response = await call_next(request)
    duration_ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %s %.1fms",
        request.method,
        request.url.path,
        response.status_code,
        duration_ms,
    )
    return response


def _die(message: str, exc: BaseException = None) -> None:
    logger.critical(message, exc_info=exc)
    logging.shutdown()
    os._exit(1)


def install_crash_handlers(loop: asyncio.AbstractEventLoop) -> None:
    """
    Terminate the process on the two failures we never try to recover from:
    an exception raised in a task nobody awaited, and an uncaught exception
    in any thread.
    """

    def loop_exception_handler(loop, context):
        exc = context.get("exception")
        _die(f"Unhandled exception in event loop: {context.get('message')}", exc)

    def excepthook(exc_type, exc, tb):
        _die("Uncaught exception", exc)

    def thread_excepthook(args):
        _die(f"Uncaught exception in thread {args.thread.name if args.thread else '?'}", args.exc_value)

    loop.set_exception_handler(loop_exception_handler)
    sys.excepthook = excepthook
    threading.excepthook = thread_excepthook
