"""
Client-side collaboration session.

- decoder: resilient parsing of AI payloads
- file_tree: in-memory file tree of the open project
- sandbox: execution sandbox adapter (mount / spawn / server-ready)
- project_store: HTTP client for the project REST API
- controller: the session aggregate tying the above to a room channel
"""

from .controller import CollaborationController, SessionState
from .decoder import DecodeResult, safe_json_parse
from .file_tree import FileTree

__all__ = [
    "CollaborationController",
    "DecodeResult",
    "FileTree",
    "SessionState",
    "safe_json_parse",
]
