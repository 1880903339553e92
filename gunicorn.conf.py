"""Gunicorn production configuration for the approval API."""
import multiprocessing
import os

wsgi_app = "app.main:app"
chdir = os.path.join(os.path.dirname(os.path.abspath(__file__)), "backend")

bind = os.environ.get("GUNICORN_BIND", "0.0.0.0:8000")
workers = int(os.environ.get("GUNICORN_WORKERS", multiprocessing.cpu_count() * 2 + 1))
worker_class = "uvicorn.workers.UvicornWorker"
timeout = 60
keepalive = 5
max_requests = 1000
max_requests_jitter = 100
# Completion hooks register per worker in the app lifespan
preload_app = False
accesslog = "-"
errorlog = "-"
loglevel = os.environ.get("GUNICORN_LOG_LEVEL", "info")
