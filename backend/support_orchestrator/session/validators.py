"""
Session data validation using Pydantic.
Ensures session messages and metadata are well-formed and serializable.

Version: 1.0.0
"""
import json
import logging
import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

logger = logging.getLogger(__name__)

# Fields of SessionMetadata that update_metadata may set directly
METADATA_FIELDS = {"tenant_id", "customer_id", "escalated", "tags"}


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class SessionMessage(BaseModel):
    """
    A single conversation turn.

    Messages are immutable once stored; the store may adjust ``timestamp``
    on append to keep the log time-monotonic.
    """
    model_config = ConfigDict(use_enum_values=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    role: MessageRole
    content: str = Field(..., max_length=100_000)
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    tools_used: List[str] = Field(default_factory=list)

    def to_json(self) -> str:
        return self.model_dump_json()

    @classmethod
    def from_json(cls, raw: str) -> 'SessionMessage':
        return cls.model_validate_json(raw)


class SessionMetadata(BaseModel):
    """
    Per-session metadata.

    Unknown keys passed to ``update_metadata`` land in ``extra``.
    """

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: Optional[datetime] = None
    last_activity: Optional[datetime] = None
    tenant_id: str = ""
    customer_id: str = "anonymous"
    escalated: bool = False
    tags: List[str] = Field(default_factory=list)
    extra: Dict[str, Any] = Field(default_factory=dict)

    @field_validator('extra')
    @classmethod
    def validate_extra(cls, v: Dict[str, Any]) -> Dict[str, Any]:
        """
        Ensure metadata is JSON-serializable.

        Raises:
            ValueError: If metadata is not JSON-serializable or too large
        """
        try:
            json_str = json.dumps(v)
        except (TypeError, ValueError) as e:
            raise ValueError(f"Metadata must be JSON-serializable: {e}")

        if len(json_str) > 1_000_000:
            raise ValueError("Metadata exceeds maximum size (1MB)")
        return v

    def merged(self, partial: Dict[str, Any], now: Optional[datetime] = None) -> 'SessionMetadata':
        """Return a copy with ``partial`` applied."""
        data = self.model_dump()
        extra = dict(data.get("extra") or {})

        for key, value in partial.items():
            if key in METADATA_FIELDS:
                data[key] = value
            elif key == "extra" and isinstance(value, dict):
                extra.update(value)
            else:
                extra[key] = value

        data["extra"] = extra
        data["updated_at"] = now or datetime.utcnow()
        return SessionMetadata.model_validate(data)

    def to_json(self) -> str:
        return self.model_dump_json()

    @classmethod
    def from_json(cls, raw: str) -> 'SessionMetadata':
        return cls.model_validate_json(raw)


__all__ = ['MessageRole', 'SessionMessage', 'SessionMetadata', 'METADATA_FIELDS']
