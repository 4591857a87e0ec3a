# room_audit/schemas/identity.py
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, model_validator


class IdentityStatus(str, Enum):
    """
    Outcome of classifying a meeting organizer against the directory.
    """

    ACTIVE = "Active"
    DISABLED = "Disabled"
    NOT_FOUND = "NotFound"
    EXTERNAL = "External"

    @property
    def is_ghost(self) -> bool:
        """
        True when a meeting organized by this identity is a ghost meeting.
        """
        return _GHOST_BY_STATUS[self]


_GHOST_BY_STATUS = {
    IdentityStatus.ACTIVE: False,
    IdentityStatus.DISABLED: True,
    IdentityStatus.NOT_FOUND: True,
    IdentityStatus.EXTERNAL: False,
}


# Mailbox purposes that belong to rooms, equipment or shared mailboxes rather
# than people. They are never "disabled" in the human-account sense.
RESOURCE_DIRECTORY_TYPES = frozenset({"shared", "room", "equipment"})

UNKNOWN_DIRECTORY_TYPE = "unknown"


class DirectoryEntry(BaseModel):
    """
    Minimal view of an account returned by a directory lookup.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Directory object identifier.")
    address: str = Field(..., description="Primary address of the account.")
    directory_type: str = Field(
        UNKNOWN_DIRECTORY_TYPE,
        description="Mailbox purpose: user, linked, shared, room, equipment, others or unknown.",
    )

    @property
    def is_resource(self) -> bool:
        return self.directory_type.lower() in RESOURCE_DIRECTORY_TYPES


class IdentityState(BaseModel):
    """
    Classification result for one organizer address.

    Computed once per distinct address per audit run and never mutated.
    `resolved_internal_address` is only populated when an address outside the
    organization suffix was matched to an internal account.
    """

    model_config = ConfigDict(frozen=True)

    address: str = Field(..., examples=["jane.doe@corp.com"])
    status: IdentityStatus = Field(..., examples=[IdentityStatus.ACTIVE])
    enabled: bool | None = Field(
        None,
        description="Account enabled state; null when unknown or not applicable.",
    )
    directory_type: str = Field(UNKNOWN_DIRECTORY_TYPE, examples=["user"])
    resolved_internal_address: str | None = Field(
        None,
        description="Internal address an external organizer was matched to.",
        examples=["jane.doe@corp.com"],
    )
    matched_internal: bool = False

    @model_validator(mode="after")
    def _check_remap(self) -> "IdentityState":
        if self.matched_internal != (self.resolved_internal_address is not None):
            raise ValueError(
                "resolved_internal_address must be set exactly when matched_internal is true"
            )
        if self.status is IdentityStatus.EXTERNAL and self.matched_internal:
            raise ValueError("an external identity cannot be matched to an internal account")
        if self.status is IdentityStatus.DISABLED and self.enabled is not False:
            raise ValueError("a disabled identity must have enabled == False")
        return self
