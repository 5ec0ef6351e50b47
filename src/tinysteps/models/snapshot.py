"""
Portable snapshot document.

The on-disk form is a tagged JSON object with camelCase keys:

    {
        "format": "tinysteps.snapshot",
        "version": "1.0.0",
        "createdAt": "2025-09-21T08:00:00",
        "entities": {"feeding": "<base64>", ...},
        "pendingItems": [{"id": ..., "entityType": ..., "action": ...,
                          "payload": "<base64>", "timestamp": ...}],
        "lastSyncTimestamp": null
    }

Payloads are opaque bytes, so they travel base64-encoded. Unknown keys are
ignored on load so newer writers can add fields without breaking readers.
"""
import base64
from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from tinysteps.clock import to_naive_utc
from tinysteps.models.entities import EntityType, SyncAction
from tinysteps.models.sync import SyncItem

SNAPSHOT_FORMAT = "tinysteps.snapshot"


def encode_payload(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def decode_payload(text: str) -> bytes:
    return base64.b64decode(text.encode("ascii"), validate=True)


class SnapshotItem(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str
    entity_type: EntityType
    action: SyncAction
    payload: str = ""
    timestamp: datetime

    @field_validator("timestamp")
    @classmethod
    def timestamp_as_naive_utc(cls, value: datetime) -> datetime:
        return to_naive_utc(value)

    @classmethod
    def from_sync_item(cls, item: SyncItem) -> "SnapshotItem":
        return cls(
            id=item.id,
            entity_type=item.entity_type,
            action=item.action,
            payload=encode_payload(item.payload),
            timestamp=item.timestamp,
        )

    def to_sync_item(self) -> SyncItem:
        return SyncItem(
            id=self.id,
            entity_type=self.entity_type,
            action=self.action,
            payload=decode_payload(self.payload),
            timestamp=self.timestamp,
        )


class SnapshotDocument(BaseModel):
    """Local Store + Mutation Queue + last sync time, as one artifact."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    format: str = SNAPSHOT_FORMAT
    version: str
    created_at: datetime
    entities: Dict[EntityType, str] = Field(default_factory=dict)
    pending_items: List[SnapshotItem] = Field(default_factory=list)
    last_sync_timestamp: Optional[datetime] = None

    @field_validator("created_at", "last_sync_timestamp")
    @classmethod
    def datetimes_as_naive_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return to_naive_utc(value) if value is not None else None

    @model_validator(mode="after")
    def pending_item_ids_unique(self) -> "SnapshotDocument":
        seen = set()
        for item in self.pending_items:
            if item.id in seen:
                raise ValueError(f"duplicate pending item id {item.id!r}")
            seen.add(item.id)
        return self

    def entity_payloads(self) -> Dict[EntityType, bytes]:
        return {etype: decode_payload(text) for etype, text in self.entities.items()}

    def sync_items(self) -> List[SyncItem]:
        return [item.to_sync_item() for item in self.pending_items]

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, indent=2)
