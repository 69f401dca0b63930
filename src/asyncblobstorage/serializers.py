"""Encoding of blob property records for the local backend's sidecar files."""

import json
from datetime import datetime
from typing import Any, Protocol

FORMAT_VERSION = 1
TYPE_MARKER = "_bstype_"


class Serializer(Protocol):
    extension: str

    def serialize(self, props: dict[str, Any]) -> bytes: ...
    def deserialize(self, data: bytes) -> dict[str, Any]: ...
    def file_name(self, blob_id: str) -> str: ...


def _encode(o: Any) -> Any:
    if isinstance(o, datetime):
        return {TYPE_MARKER: "datetime", "value": o.isoformat()}
    raise TypeError(f"Type {type(o).__name__} not serializable")


def _decode(d: dict[str, Any]) -> Any:
    if d.get(TYPE_MARKER) == "datetime":
        return datetime.fromisoformat(d["value"])
    return d


class JSONSerializer(Serializer):
    """Property records as JSON documents; datetimes are tagged so they round-trip."""

    extension = "json"

    def serialize(self, props: dict[str, Any]) -> bytes:
        document = {"format": FORMAT_VERSION, "properties": props}
        try:
            return json.dumps(document, default=_encode, sort_keys=True, indent=2).encode("utf-8")
        except TypeError as e:
            raise ValueError(f"Blob properties are not JSON-serializable: {e}") from e

    def deserialize(self, data: bytes) -> dict[str, Any]:
        try:
            document = json.loads(data.decode("utf-8"), object_hook=_decode)
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise ValueError(f"Invalid property file: {e}") from e
        if not isinstance(document, dict) or document.get("format") != FORMAT_VERSION:
            raise ValueError("Unsupported property file format")
        return document["properties"]

    def file_name(self, blob_id: str) -> str:
        return f"{blob_id}.{self.extension}"
