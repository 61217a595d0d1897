"""Route modules exposed by the API package."""

from . import auth, chats, ping, tickets

__all__ = ["auth", "chats", "ping", "tickets"]
