#!/usr/bin/env python3
"""
SSL-enabled server. Browsers only grant camera/microphone access to WebRTC
pages served over HTTPS (or localhost).
"""
import eventlet
eventlet.monkey_patch()
import logging
import os
import sys

from smartmeet import create_app, shutdown_conference, socketio

logging.basicConfig(
    format='%(asctime)s [%(levelname)s] %(filename)s:%(lineno)d - %(message)s',
    level=logging.INFO,
)
log = logging.getLogger("ssl_run")

# Get SSL certificate paths from environment or default
cert_path = os.environ.get('SSL_CERT_PATH', '/app/ssl/cert.pem')
key_path = os.environ.get('SSL_KEY_PATH', '/app/ssl/key.pem')
port = int(os.environ.get('PORT', 5443))

app = create_app()

if __name__ == '__main__':
    for label, path in (("certificate", cert_path), ("private key", key_path)):
        if not os.path.exists(path):
            log.error("SSL %s not found at %s", label, path)
            sys.exit(1)
    log.info("Starting with SSL: cert=%s, key=%s", cert_path, key_path)
    try:
        # eventlet's server wraps the socket itself from certfile/keyfile
        socketio.run(app, host="0.0.0.0", port=port, certfile=cert_path, keyfile=key_path)
    finally:
        shutdown_conference(app)
