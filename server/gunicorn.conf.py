"""Gunicorn configuration for production deployment.

Bind address, worker count and log level come from the same Settings the
application reads, so one .env drives both.

Usage:
    gunicorn main:app -c gunicorn.conf.py
"""
import os

from core.config import Settings

settings = Settings()

bind = f"{settings.host}:{settings.port}"

# Fallback rate-limit counters are per process, so Redis should be up when running more than one worker.
workers = settings.workers
worker_class = "uvicorn.workers.UvicornWorker"

timeout = int(os.getenv("GUNICORN_TIMEOUT", "60"))
graceful_timeout = int(os.getenv("GUNICORN_GRACEFUL_TIMEOUT", "30"))
keepalive = int(os.getenv("GUNICORN_KEEPALIVE", "5"))

max_requests = int(os.getenv("GUNICORN_MAX_REQUESTS", "10000"))
max_requests_jitter = int(os.getenv("GUNICORN_MAX_REQUESTS_JITTER", "1000"))

accesslog = "-" if not settings.debug else None
errorlog = "-"
loglevel = settings.log_level.lower()

proc_name = "chapter-service"

# Preload app for faster worker startup (disable in debug for reload)
preload_app = not settings.debug
