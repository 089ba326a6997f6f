"""
Canonical order model shared by the mapper, the queue and the remote gateway.

Attribute names are the canonical ones used throughout the sync logic; the
field aliases are the names the remote /api/os endpoints speak, so
``to_payload()`` produces exactly the JSON body of ``POST /api/os``.

The queue file additionally carries two shadow keys (``_externalId`` and
``_status``) next to the payload. They exist only on disk and are never sent
to the remote API.
"""
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

LEGACY_MARKER_TEMPLATE = "[legacy:{}]"

SHADOW_EXTERNAL_ID = "_externalId"
SHADOW_STATUS = "_status"


def legacy_marker(external_id: str) -> str:
    """Marker embedded in the note so the remote side can recover the link."""
    return LEGACY_MARKER_TEMPLATE.format(external_id)


class LifecycleStatus(str, Enum):
    """Order lifecycle. Declaration order is the progression order."""

    RECEIVED = "RECEIVED"
    WAITING = "WAITING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"

    @property
    def rank(self) -> int:
        return list(LifecycleStatus).index(self)


class Priority(str, Enum):
    URGENT = "URGENT"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class CanonicalOrder(BaseModel):
    """One service order, normalized from a legacy row."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    external_id: str = Field(alias="osNumber", min_length=1)
    client_name: str = Field(alias="clientName")
    equipment_description: str = Field(alias="equipmentName")
    serial_number: Optional[str] = Field(default=None, alias="serialNumber")
    accessories_note: Optional[str] = Field(default=None, alias="accessories")
    has_prior_defect: bool = Field(default=False, alias="hasPreviousDefect")
    prior_defect_text: Optional[str] = Field(
        default=None, alias="previousDefectDescription"
    )
    freeform_note: str = Field(alias="optionalDescription")
    priority: Priority = Priority.MEDIUM
    lifecycle_status: LifecycleStatus = Field(
        default=LifecycleStatus.RECEIVED, alias="currentStatus"
    )

    def to_payload(self) -> Dict[str, Any]:
        """JSON body for ``POST /api/os`` (no internal-only keys)."""
        return self.model_dump(by_alias=True, mode="json")

    def to_queue_record(self) -> Dict[str, Any]:
        """Payload plus the shadow keys used for matching on reload."""
        record = self.to_payload()
        record[SHADOW_EXTERNAL_ID] = self.external_id
        record[SHADOW_STATUS] = self.lifecycle_status.value
        return record

    @classmethod
    def from_queue_record(cls, record: Dict[str, Any]) -> "CanonicalOrder":
        """Rebuild an order from a persisted queue record.

        Raises:
            pydantic.ValidationError: if the record is not a usable order.
        """
        data = {k: v for k, v in record.items() if not k.startswith("_")}
        if SHADOW_EXTERNAL_ID in record:
            data.setdefault("osNumber", record[SHADOW_EXTERNAL_ID])
        if SHADOW_STATUS in record:
            data.setdefault("currentStatus", record[SHADOW_STATUS])
        return cls.model_validate(data)
