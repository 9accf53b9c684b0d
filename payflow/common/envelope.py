"""Event envelope model and its JSON wire codec.

Kept free of process settings so operator tooling can build envelopes without
a configured store or broker.
"""

from datetime import datetime, timezone
from typing import Any, Generic, TypeVar
from uuid import UUID, uuid4

import simplejson
from pydantic import AwareDatetime, BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from payflow.common.errors import BadEnvelope


PayloadT = TypeVar("PayloadT")


class CamelModel(BaseModel):
    """Base for wire models: camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class Envelope(CamelModel, Generic[PayloadT]):
    """Canonical event shape sent across the topic exchange."""

    event_name: str
    event_version: int
    event_id: UUID
    correlation_id: UUID | None = None
    producer: str
    partition_key: str | None = None
    sequence: int | None = Field(default=None, ge=-(2**63), le=2**63 - 1)
    occurred_at: AwareDatetime
    schema_id: str | None = Field(default=None, alias="schema")
    payload: PayloadT

    @property
    def routing_key(self) -> str:
        return f"{self.event_name}.v{self.event_version}"


def build_envelope(
    event_name: str,
    payload: Any,
    producer: str,
    correlation_id: UUID | None = None,
    partition_key: str | None = None,
    event_version: int = 1,
) -> Envelope:
    """Create a fresh envelope stamped with a new event id and the current time."""

    return Envelope[type(payload)](
        event_name=event_name,
        event_version=event_version,
        event_id=uuid4(),
        correlation_id=correlation_id,
        producer=producer,
        partition_key=partition_key,
        occurred_at=datetime.now(timezone.utc),
        payload=payload,
    )


def _json_default(value: Any) -> str:
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    raise TypeError(f"{type(value).__name__} is not JSON serializable")


def dump_json(data: Any) -> bytes:
    """Serialize to UTF-8 JSON, writing each Decimal as its own number literal."""

    return simplejson.dumps(data, use_decimal=True, default=_json_default).encode("utf-8")


def encode_envelope(envelope: Envelope) -> bytes:
    """Serialize an envelope to UTF-8 JSON; absent optional fields are omitted."""

    return dump_json(envelope.model_dump(by_alias=True, exclude_none=True))


def decode_envelope(body: bytes, payload_type: type[PayloadT]) -> Envelope[PayloadT]:
    """Parse a UTF-8 JSON body into a typed envelope or raise `BadEnvelope`."""

    try:
        data = simplejson.loads(body.decode("utf-8"), use_decimal=True)
    except (UnicodeDecodeError, ValueError) as exc:
        raise BadEnvelope(f"body is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise BadEnvelope(f"envelope must be a JSON object, got {type(data).__name__}")
    try:
        return Envelope[payload_type].model_validate(data)
    except ValidationError as exc:
        raise BadEnvelope(f"invalid envelope: {exc.error_count()} error(s): {exc}") from exc
