"""Gunicorn settings for the payments API.

Usage:
    gunicorn -c gunicorn.conf.py app.main:app
"""
from __future__ import annotations

import multiprocessing
import os


def _int_env(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


bind = os.getenv("GUNICORN_BIND", "0.0.0.0:8001")
worker_class = "uvicorn.workers.UvicornWorker"
workers = _int_env("GUNICORN_WORKERS", min(multiprocessing.cpu_count() * 2 + 1, 8))
worker_tmp_dir = "/dev/shm"

# Initiate and recheck make up to two Paylink calls (auth + request), each
# bounded by PAYLINK_TIMEOUT_SECONDS, so the worker timeout sits well above that.
timeout = _int_env("GUNICORN_TIMEOUT", 60)
graceful_timeout = _int_env("GUNICORN_GRACEFUL_TIMEOUT", 30)
keepalive = _int_env("GUNICORN_KEEPALIVE", 5)

max_requests = _int_env("GUNICORN_MAX_REQUESTS", 2000)
max_requests_jitter = _int_env("GUNICORN_MAX_REQUESTS_JITTER", 100)

# Each worker owns its PaylinkGateway and token cache; preloading would not share them.
preload_app = os.getenv("GUNICORN_PRELOAD", "false").lower() == "true"

# Paylink callbacks arrive through the ingress proxy
forwarded_allow_ips = os.getenv("FORWARDED_ALLOW_IPS", "127.0.0.1")

accesslog = os.getenv("GUNICORN_ACCESSLOG", "-")
errorlog = os.getenv("GUNICORN_ERRORLOG", "-")
loglevel = os.getenv("GUNICORN_LOGLEVEL", "info")
# The Authorization header is never logged: it carries the webhook credential.
access_log_format = '%(h)s %(t)s "%(r)s" %(s)s %(b)s %(D)s "%({x-request-id}i)s"'

proc_name = "sports_market_payments"
