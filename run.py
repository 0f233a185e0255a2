# run.py
import eventlet
eventlet.monkey_patch()
import logging
import os
from smartmeet import create_app, shutdown_conference, socketio

app = create_app()

# Configure logging to include line number
logging.basicConfig(
    format='%(asctime)s [%(levelname)s] %(filename)s:%(lineno)d - %(message)s',
    level=app.config.get('LOG_LEVEL', 'INFO'),
)


if __name__ == "__main__":
    port = int(os.environ.get('PORT', 5001))
    try:
        socketio.run(app, host="0.0.0.0", port=port, debug=os.environ.get('FLASK_DEBUG') == '1')
    finally:
        shutdown_conference(app)
