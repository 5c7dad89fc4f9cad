"""Personal PID departure board: stop search, departure projection and offline fallback."""

__version__ = "0.1.0"
