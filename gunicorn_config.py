"""
Gunicorn configuration for the TourismIQ API
Run with: gunicorn -c gunicorn_config.py main:application
"""
import multiprocessing
import os

# Server socket
bind = os.environ.get("BIND", "0.0.0.0:5000")
backlog = 2048

# Worker processes - plain sync workers; realtime fan-out goes through the hosted service
workers = int(os.environ.get("WEB_CONCURRENCY", multiprocessing.cpu_count() * 2 + 1))
worker_class = "sync"
max_requests = 5000  # Restart workers after this many requests to prevent memory leaks
max_requests_jitter = 500
timeout = 60
graceful_timeout = 30
keepalive = 5

proc_name = "tourismiq_api"

# Logging
accesslog = "-"
errorlog = "-"
loglevel = os.environ.get("LOG_LEVEL", "info").lower()
access_log_format = '%(h)s %(l)s %(u)s %(t)s "%(r)s" %(s)s %(b)s "%(f)s" "%(a)s" %(D)s'

daemon = False
preload_app = True  # Load app before forking workers
reload = False


def when_ready(server):
    """Called just after the server is started"""
    server.log.info(f"TourismIQ API ready. Listening at: {bind}")
    server.log.info(f"Using {workers} workers with {worker_class} worker class")


def post_fork(server, worker):
    """Dispose pooled DB connections inherited from the master"""
    from app import app, db
    with app.app_context():
        db.engine.dispose()
    server.log.info(f"Worker spawned (pid: {worker.pid})")


def worker_exit(server, worker):
    """Called just after a worker has been exited"""
    server.log.info(f"Worker {worker.pid} exited")


def on_exit(server):
    """Called just before exiting"""
    server.log.info("Shutting down TourismIQ API...")


# Environment-specific configurations
if os.environ.get("FLASK_ENV") != "production":
    workers = 2  # Fewer workers in development
    loglevel = "debug"
