# /flowcore/services/text_splitter.py

from typing import List, Sequence, Union

Separators = Union[str, Sequence[str], None]


def _as_list(separators: Separators) -> List[str]:
    if not separators:
        return []
    if isinstance(separators, str):
        return [separators]
    return list(separators)


def _find_split_point(document: str, start: int, raw_end: int, separators: List[str]) -> int:
    """Ends the chunk just after the last occurrence of the first usable separator."""
    raw_chunk = document[start:raw_end]
    for separator in separators:
        position = raw_chunk.rfind(separator)
        if position > 0:
            return start + position + len(separator)
    return raw_end


def _overlap_start(document: str, end: int, overlap: int, separators: List[str]) -> int:
    window_start = max(end - overlap, 0)
    window = document[window_start:end]
    for separator in separators:
        position = window.find(separator)
        if position != -1:
            return window_start + position + len(separator)
    return window_start


def get_splits(document: str, chunk_size: int, separators: Separators = None, overlap: int = 0) -> List[str]:
    """
    Splits document into chunks of at most chunk_size characters, preferring to
    break after a separator. With overlap, each chunk starts up to `overlap`
    characters before the end of the previous one, moved forward to just after
    a separator when the overlap window contains one. Chunks are stripped and
    empty ones are dropped, so every chunk is a substring of the document.
    """
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")
    separators = _as_list(separators)
    splits: List[str] = []
    start = 0
    length = len(document)
    while start < length:
        raw_end = start + chunk_size
        end = _find_split_point(document, start, raw_end, separators) if raw_end < length else length
        chunk = document[start:end].strip()
        if chunk:
            splits.append(chunk)
        if end >= length:
            break
        next_start = _overlap_start(document, end, overlap, separators) if overlap else end
        start = next_start if start < next_start < end else end
    return splits
