import json
from typing import Iterable


def dump_json(value) -> str:
    """Render a value as indented JSON for diagnostic logs."""
    return json.dumps(value, indent=2, ensure_ascii=False, default=str)


def header_pairs_to_dict(pairs: Iterable[tuple[str, str]]) -> dict:
    """Fold header pairs for display; repeated names are joined into a list."""
    result: dict = {}
    for name, value in pairs:
        if name in result:
            existing = result[name]
            result[name] = existing + [value] if isinstance(existing, list) else [existing, value]
        else:
            result[name] = value
    return result


def preview_text(data: bytes, limit: int) -> str:
    """Decode at most ``limit`` bytes of ``data``, marking truncation with ``...``."""
    text = data[:limit].decode("utf-8", errors="replace")
    if len(data) > limit:
        text += "..."
    return text


def decode_header_pairs(pairs: Iterable[tuple[bytes, bytes]]) -> list[tuple[str, str]]:
    """Raw header byte pairs as text for display; undecodable bytes are replaced."""
    return [
        (name.decode("latin-1"), value.decode("utf-8", errors="replace"))
        for name, value in pairs
    ]
