from __future__ import annotations

import json
from typing import Any, Dict

from .errors import EnvelopeError
from .models import RpcEnvelope

# Field name -> accepted JSON types (None means JSON null is allowed)
_FIELD_TYPES: Dict[str, tuple] = {
    "jsonrpc": (str, type(None)),
    "method": (str, type(None)),
    "params": (list, type(None)),
}


def _check_id(value: Any) -> None:
    if value is None:
        return
    # bool is an int subclass but not a valid id
    if isinstance(value, bool) or not isinstance(value, int):
        raise EnvelopeError(f"field 'id' must be an integer, got {type(value).__name__}")


def decode_envelope(raw: bytes) -> RpcEnvelope:
    """
    Parse a single JSON-RPC request envelope.

    Only ``jsonrpc``, ``method``, ``params`` and ``id`` are inspected; any other
    member is ignored. The raw bytes are left untouched, callers forward them
    as they are.
    """
    try:
        data = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise EnvelopeError(str(exc)) from exc

    if not isinstance(data, dict):
        raise EnvelopeError(f"expected a JSON object, got {type(data).__name__}")

    for name, allowed in _FIELD_TYPES.items():
        if name in data and not isinstance(data[name], allowed):
            raise EnvelopeError(f"field '{name}' has unexpected type {type(data[name]).__name__}")
    _check_id(data.get("id"))

    return RpcEnvelope.from_dict(data)
