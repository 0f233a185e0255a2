# smartmeet/__init__.py
import logging
import os
from typing import Any, Dict

from flask import Flask, jsonify
from flask_cors import CORS
from sqlalchemy import text
from .config import Config
from .extensions import db, socketio, login_manager
from .models import User

"""
Note on import ordering:
Socket.IO handlers live in smartmeet.sockets. They must be imported before the
first socketio.init_app() so the decorators queue into ``socketio.handlers``;
every init_app() then registers that list on the new server, which gives each
app created in the process the full set of handlers.
"""


def create_app(config_object=None):
    app = Flask(__name__)
    app.config.from_object(config_object or Config)

    # If running under pytest, force an in-memory DB and testing mode BEFORE init_app
    # so the SQLAlchemy engine binds to the correct URI for the lifetime of the app.
    if os.environ.get('PYTEST_CURRENT_TEST'):
        app.config['TESTING'] = True
        app.config['SQLALCHEMY_DATABASE_URI'] = 'sqlite:///:memory:'

    # Ensure instance folder exists
    try:
        os.makedirs(app.instance_path)
    except OSError:
        pass

    app.logger.setLevel(app.config.get('LOG_LEVEL', 'INFO'))

    # Enable CORS
    CORS(app, resources={r"/*": {"origins": "*"}})  # Allow all for dev, adjust later

    # Initialize Application Extensions
    db.init_app(app)
    login_manager.init_app(app)
    # eventlet in production; the threading mode keeps handlers synchronous under tests
    async_mode: str = app.config.get('SOCKETIO_ASYNC_MODE') or 'eventlet'
    if app.config.get('TESTING'):
        async_mode = 'threading'
    socketio_kwargs: Dict[str, Any] = {"cors_allowed_origins": "*", "async_mode": async_mode}
    if async_mode == "threading":
        socketio_kwargs["async_handlers"] = False
    # Register Socket.IO event handlers before init_app (see note above)
    from . import sockets  # noqa: F401
    socketio.init_app(app, **socketio_kwargs)

    init_conference(app)

    @login_manager.user_loader
    def load_user(user_id):
        # Return the user object from the user ID stored in the session
        try:
            return db.session.get(User, int(user_id))
        except (TypeError, ValueError):
            return None

    @app.route('/health')
    def health():
        conference = app.extensions['conference']
        try:
            db.session.execute(text('SELECT 1'))
            database = 'ok'
        except Exception as exc:
            db.session.rollback()
            app.logger.warning("health_db_check_failed: %s", exc)
            database = 'error'
        status = 200 if database == 'ok' else 503
        return jsonify({
            'status': 'ok' if status == 200 else 'degraded',
            'database': database,
            'rooms': len(conference.registry.meeting_codes()),
        }), status

    with app.app_context():
        # Create database tables if they don't exist. Under pytest we force an
        # in-memory SQLite DB, so this always yields a fresh schema.
        db.create_all()

    return app


def init_conference(app):
    """Create the process-owned conference service for ``app``."""
    from .conference import ConferenceService, SocketIOBroadcaster
    from .meetings import EngagementStore, JoinCredentialVerifier, MeetingStore

    service = ConferenceService(
        SocketIOBroadcaster(socketio),
        MeetingStore(default_ttl_hours=int(app.config.get('MEETING_DEFAULT_TTL_HOURS', 24))),
        EngagementStore(),
        JoinCredentialVerifier(app.config['JWT_SECRET']),
        require_join_token=bool(app.config.get('REQUIRE_JOIN_TOKEN')),
        chat_max_chars=int(app.config.get('CHAT_MESSAGE_MAX_CHARS', 500)),
    )
    app.extensions['conference'] = service
    return service


def mint_join_token(app, meeting_code: str) -> str:
    """Issue a join credential with the app's secret and JOIN_TOKEN_TTL_SECONDS."""
    from .meetings import issue_join_token

    return issue_join_token(
        app.config['JWT_SECRET'], meeting_code, int(app.config.get('JOIN_TOKEN_TTL_SECONDS', 300))
    )


def shutdown_conference(app):
    service = app.extensions.pop('conference', None)
    if service is not None:
        service.clear()
        logging.getLogger(__name__).info("conference state cleared")
