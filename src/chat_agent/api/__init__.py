"""HTTP API and WebSocket chat hub"""

from .hub import ChatHub

__all__ = [
    'ChatHub'
]
