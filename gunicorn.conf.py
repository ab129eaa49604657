import os

wsgi_app = "app:create_app()"

# Build fonts, mapping table and partner clients once, before serving
preload_app = True

# Per-line locks are process local: a second worker could submit the same line twice
workers = 1
worker_class = "gthread"
threads = int(os.getenv("GUNICORN_THREADS", "4"))

bind = f"0.0.0.0:{os.getenv('PORT', '8080')}"

accesslog = "-"
errorlog = "-"
loglevel = os.getenv("LOG_LEVEL", "info")

# A webhook delivery renders, uploads and talks to the partner with retries
timeout = 120
graceful_timeout = 30
