# gunicorn.conf.py - gunicorn -c gunicorn.conf.py run:app
import os

bind = os.environ.get('BIND', '0.0.0.0:5001')

# Socket.IO keeps room membership in process memory: exactly one eventlet worker
workers = 1
worker_class = 'eventlet'

worker_connections = 1000
timeout = 120
keepalive = 2
preload_app = True

# Logging
accesslog = '-'
errorlog = '-'
loglevel = os.environ.get('LOG_LEVEL', 'info').lower()
