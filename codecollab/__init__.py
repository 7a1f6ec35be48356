"""
codecollab - collaborative coding backend and client session core.

Server side: FastAPI app over a MongoDB project store with per-project
WebSocket rooms and an AI assistant.
Client side: the collaboration session (decoder, file tree, channel,
controller, sandbox adapter) under ``codecollab.session``.
"""

__version__ = "1.0.0"
