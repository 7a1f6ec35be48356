"""
JSON Schemas for payloads crossing the REST and WebSocket boundaries, and the
guard that checks inbound payloads against them.
"""

from .guard import guard_payload
from .schemas import ChatMessageSchema, FileTreeSchema, RoomEnvelopeSchema

__all__ = ["ChatMessageSchema", "FileTreeSchema", "RoomEnvelopeSchema", "guard_payload"]
