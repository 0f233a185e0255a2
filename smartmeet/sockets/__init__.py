"""Feature Socket.IO gateways.

Importing this package registers the conference event handlers on the shared
``socketio`` instance from :mod:`smartmeet.extensions`.
"""

from . import conference_gateway  # noqa: F401

__all__ = ["conference_gateway"]
