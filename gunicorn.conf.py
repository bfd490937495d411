"""Gunicorn production configuration for the approval API.

Run from the repository root: ``gunicorn -c gunicorn.conf.py``.
"""
import multiprocessing
import os

wsgi_app = "spendflow.main:app"
pythonpath = "backend"

bind = os.environ.get("SPENDFLOW_BIND", "0.0.0.0:8000")
# Handlers hold a sync DB connection per request; size workers to the pool.
workers = int(os.environ.get("SPENDFLOW_WORKERS", multiprocessing.cpu_count() + 1))
worker_class = "uvicorn.workers.UvicornWorker"
timeout = 30
graceful_timeout = 20
keepalive = 5
max_requests = 2000
max_requests_jitter = 200
preload_app = True
accesslog = "-"
errorlog = "-"
loglevel = "info"
