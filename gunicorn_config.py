# gunicorn_config.py
# Run with: gunicorn -c gunicorn_config.py app:app
import os

bind = f"0.0.0.0:{os.environ.get('PORT', '10000')}"
# SocketIO broadcasts are in-process, so a single worker
workers = 1
worker_class = "gevent"
timeout = 120
keepalive = 5
loglevel = os.environ.get('LOG_LEVEL', 'info').lower()
accesslog = '-'
