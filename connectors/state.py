"""
OAuth ``state`` token codec.

The state is a base64-encoded JSON object ``{"sourceId": ..., "tenantId": ...}``
(``sourceId`` is omitted for sign-in flows).  It round-trips through the
provider's redirect and therefore arrives as untrusted input: ``decode_state``
schema-checks it before anything acts on it, and the state machine further
requires the referenced source to exist under that tenant and to be awaiting
a callback.
"""

from __future__ import annotations

import base64
import binascii
import json
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from connectors.errors import InvalidStateError

_MAX_STATE_LENGTH = 2048


class OAuthState(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    source_id: Optional[str] = Field(default=None, alias="sourceId", min_length=1, max_length=64)
    tenant_id: str = Field(alias="tenantId", min_length=1, max_length=64)


def encode_state(tenant_id: str, source_id: Optional[str] = None) -> str:
    payload = {"sourceId": source_id, "tenantId": tenant_id} if source_id else {"tenantId": tenant_id}
    return base64.b64encode(json.dumps(payload, separators=(",", ":")).encode()).decode()


def decode_state(state: str) -> OAuthState:
    """Decode and validate a state token; raises ``InvalidStateError``."""
    if not state or len(state) > _MAX_STATE_LENGTH:
        raise InvalidStateError("state is empty or too long")
    padded = state + "=" * (-len(state) % 4)
    try:
        if "-" in state or "_" in state:
            raw = base64.urlsafe_b64decode(padded)
        else:
            raw = base64.b64decode(padded, validate=True)
        payload = json.loads(raw.decode("utf-8"))
    except (binascii.Error, ValueError, UnicodeDecodeError) as exc:
        raise InvalidStateError(f"state is not base64 JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise InvalidStateError("state payload must be a JSON object")
    try:
        return OAuthState.model_validate(payload)
    except ValidationError as exc:
        raise InvalidStateError(f"state payload failed validation: {exc.error_count()} error(s)") from exc
