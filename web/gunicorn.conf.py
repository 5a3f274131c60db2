import os

wsgi_app = "config.wsgi:application"
bind = os.getenv("GUNICORN_BIND", "0.0.0.0:8000")

# Checkout and webhook handlers block on provider calls, so threads do the waiting.
worker_class = "gthread"
workers = int(os.getenv("GUNICORN_WORKERS", str(min(max(2, (os.cpu_count() or 1) * 2), 8))))
threads = int(os.getenv("GUNICORN_THREADS", "4"))

# Must exceed HTTP_TIMEOUT_SECS x HTTP_RETRY_MAX so a slow provider fails the request, not the worker.
timeout = int(os.getenv("GUNICORN_TIMEOUT", "60"))
graceful_timeout = int(os.getenv("GUNICORN_GRACEFUL_TIMEOUT", "30"))
keepalive = int(os.getenv("GUNICORN_KEEPALIVE", "5"))

preload_app = True
max_requests = int(os.getenv("GUNICORN_MAX_REQUESTS", "2000"))
max_requests_jitter = int(os.getenv("GUNICORN_MAX_REQUESTS_JITTER", "200"))

# Application logs are JSON via Django LOGGING; gunicorn keeps its own access/error streams.
accesslog = "-"
errorlog = "-"
loglevel = os.getenv("GUNICORN_LOGLEVEL", "info")
