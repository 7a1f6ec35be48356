"""
Guard layer: validate an inbound payload before acting on it.
"""

from __future__ import annotations

from typing import Any, List, Tuple

from jsonschema import Draft7Validator


def validate(schema: dict, payload: Any) -> Tuple[bool, List[str]]:
    """
    Returns (is_valid, errors).
    """
    validator = Draft7Validator(schema)
    errors = []
    for err in sorted(validator.iter_errors(payload), key=lambda e: list(e.path)):
        # Prefer a field path when there is one.
        path = ".".join([str(p) for p in err.path]) if err.path else None
        if path:
            errors.append(f"{path}: {err.message}")
        else:
            errors.append(err.message)
    return (len(errors) == 0), errors


def guard_payload(kind: str, schema: dict, payload: Any) -> dict:
    """
    Guard result protocol:
    - action == "PROCEED": payload is safe to use
    - action == "REJECT": payload is invalid; ``errors`` lists why
    """
    is_valid, errors = validate(schema, payload)
    if not is_valid:
        return {
            "action": "REJECT",
            "kind": kind,
            "errors": errors[:10],
            "message": f"Invalid {kind} payload.",
        }
    return {"action": "PROCEED", "kind": kind}
