from __future__ import annotations

import hashlib
import json
from typing import Any

from pydantic import BaseModel


def canonical_json_bytes(obj: Any) -> bytes:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode(
        "utf-8"
    )


def canonical_model_bytes(model: BaseModel) -> bytes:
    data = model.model_dump(mode="json", by_alias=True)
    return canonical_json_bytes(data)


def pretty_model_text(model: BaseModel) -> str:
    data = model.model_dump(mode="json", by_alias=True)
    return json.dumps(data, sort_keys=True, indent=2, ensure_ascii=False) + "\n"


def sha256_bytes(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def sha256_canonical(obj: Any) -> str:
    return sha256_bytes(canonical_json_bytes(obj))


def text_digest(text: str, *, length: int = 16) -> str:
    """Short content digest of source text, used in candidate identity."""
    return sha256_bytes(text.encode("utf-8"))[:length]


def model_sha256(model: BaseModel) -> str:
    return sha256_bytes(canonical_model_bytes(model))
