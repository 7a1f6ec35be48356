"""
Canonical JSON Schemas shared by the REST handlers and the room endpoint.
"""

from __future__ import annotations

FileNodeSchema: dict = {
    "type": "object",
    "properties": {
        "file": {
            "type": "object",
            "properties": {"contents": {"type": "string"}},
            "required": ["contents"],
        },
        # Nested directories are accepted; the sandbox mounts them recursively.
        "directory": {"type": "object"},
    },
    "anyOf": [{"required": ["file"]}, {"required": ["directory"]}],
}

FileTreeSchema: dict = {
    "type": "object",
    "propertyNames": {"type": "string", "minLength": 1},
    "additionalProperties": FileNodeSchema,
}

SenderSchema: dict = {
    "type": "object",
    "properties": {
        "id": {"type": "string"},
        "email": {"type": ["string", "null"]},
        "displayName": {"type": ["string", "null"]},
    },
    "additionalProperties": True,
}

ChatMessageSchema: dict = {
    "type": "object",
    "properties": {
        "message": {"type": ["string", "object"]},
        "sender": SenderSchema,
    },
    "required": ["message"],
    "additionalProperties": True,
}

RoomEnvelopeSchema: dict = {
    "type": "object",
    "properties": {
        "event": {"type": "string", "minLength": 1},
        "data": {},
    },
    "required": ["event"],
}
