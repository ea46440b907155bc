"""
callsight/serialize.py
Dataclass → JSON-serializable structure (for the API and exporters).
datetimes become ISO-8601 strings, sets become sorted lists.
"""

from collections import deque
from datetime import datetime
from typing import Any


def to_dict(obj: Any) -> Any:
    if hasattr(obj, '__dataclass_fields__'):
        return {
            k: to_dict(getattr(obj, k))
            for k in obj.__dataclass_fields__
            if not k.startswith('_')
        }
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, (set, frozenset)):
        return sorted(to_dict(x) for x in obj)
    if isinstance(obj, (list, tuple, deque)):
        return [to_dict(x) for x in obj]
    if isinstance(obj, dict):
        return {k: to_dict(v) for k, v in obj.items()}
    return obj
