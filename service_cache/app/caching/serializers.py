"""
Payload serialization for the shared tier.
"""

import json
from typing import Any, Union

from shared.errors import DeserializationError


class JsonSerializer:
    """JSON strategy; the default for every cached payload."""

    def __init__(self, *, ensure_ascii: bool = False):
        self.ensure_ascii = ensure_ascii

    def dumps(self, value: Any) -> str:
        return json.dumps(value, ensure_ascii=self.ensure_ascii, default=str)

    def loads(self, raw: Union[str, bytes]) -> Any:
        try:
            if isinstance(raw, bytes):
                raw = raw.decode("utf-8")
            return json.loads(raw)
        except (TypeError, UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise DeserializationError(details={"error": str(exc)}) from exc
