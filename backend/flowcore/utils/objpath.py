# /flowcore/utils/objpath.py

import re
from typing import Any, List

# Dotted property paths such as "choices[0].message.content" or "a.b.c",
# used for model request/response shapes and flow step outputs.

_INDEX_RE = re.compile(r"\[(\d+)\]")


def _split_path(path: str) -> List[str]:
    return [segment for segment in _INDEX_RE.sub(r".\1", path).split(".") if segment != ""]


def get_path(obj: Any, path: str, default: Any = None) -> Any:
    current = obj
    for segment in _split_path(path):
        if isinstance(current, dict):
            if segment not in current:
                return default
            current = current[segment]
        elif isinstance(current, list) and segment.isdigit():
            index = int(segment)
            if index >= len(current):
                return default
            current = current[index]
        else:
            return default
    return current


def set_path(obj: dict, path: str, value: Any) -> dict:
    """Sets value at path, creating intermediate dicts as needed."""
    segments = _split_path(path)
    if not segments:
        raise ValueError("Empty property path")
    current: Any = obj
    for segment in segments[:-1]:
        if isinstance(current, list) and segment.isdigit():
            current = current[int(segment)]
            continue
        if not isinstance(current.get(segment), (dict, list)):
            current[segment] = {}
        current = current[segment]
    last = segments[-1]
    if isinstance(current, list) and last.isdigit():
        current[int(last)] = value
    else:
        current[last] = value
    return obj
