"""Push protocol models sent to the event receiver."""

from enum import Enum
from typing import Any

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    SerializationInfo,
    field_serializer,
    field_validator,
)

from hapi_indexer.models.entities import Address, Asset, Case, Reporter


class EventName(str, Enum):
    """Closed set of events forwarded to the receiver."""

    CREATE_REPORTER = "CreateReporter"
    UPDATE_REPORTER = "UpdateReporter"
    DEACTIVATE_REPORTER = "DeactivateReporter"
    ACTIVATE_REPORTER = "ActivateReporter"
    UNSTAKE = "Unstake"
    CREATE_CASE = "CreateCase"
    UPDATE_CASE = "UpdateCase"
    CREATE_ADDRESS = "CreateAddress"
    UPDATE_ADDRESS = "UpdateAddress"
    CONFIRM_ADDRESS = "ConfirmAddress"
    CREATE_ASSET = "CreateAsset"
    UPDATE_ASSET = "UpdateAsset"
    CONFIRM_ASSET = "ConfirmAsset"
    UPDATE_STAKE_CONFIGURATION = "UpdateStakeConfiguration"
    UPDATE_REWARD_CONFIGURATION = "UpdateRewardConfiguration"
    SET_AUTHORITY = "SetAuthority"
    INITIALIZE = "Initialize"

    @classmethod
    def from_method(cls, method: str) -> "EventName":
        """Parse a snake_case contract method or instruction name.

        Args:
            method: Method name, e.g. "create_reporter"

        Returns:
            Matching event name

        Raises:
            ValueError: If the method does not map to an event
        """
        if method in METHOD_ALIASES:
            return METHOD_ALIASES[method]
        pascal = "".join(part.capitalize() for part in method.split("_"))
        return cls(pascal)


METHOD_ALIASES: dict[str, EventName] = {
    "unstake_reporter": EventName.UNSTAKE,
    "create_network": EventName.INITIALIZE,
}

# Events that carry no entity state for the receiver
IGNORED_EVENTS = frozenset(
    {
        EventName.CONFIRM_ADDRESS,
        EventName.CONFIRM_ASSET,
        EventName.UPDATE_STAKE_CONFIGURATION,
        EventName.UPDATE_REWARD_CONFIGURATION,
        EventName.SET_AUTHORITY,
        EventName.INITIALIZE,
    }
)

REPORTER_EVENTS = frozenset(
    {
        EventName.CREATE_REPORTER,
        EventName.UPDATE_REPORTER,
        EventName.ACTIVATE_REPORTER,
        EventName.DEACTIVATE_REPORTER,
        EventName.UNSTAKE,
    }
)
CASE_EVENTS = frozenset({EventName.CREATE_CASE, EventName.UPDATE_CASE})
ADDRESS_EVENTS = frozenset({EventName.CREATE_ADDRESS, EventName.UPDATE_ADDRESS})
ASSET_EVENTS = frozenset({EventName.CREATE_ASSET, EventName.UPDATE_ASSET})


class PushEvent(BaseModel):
    """Event metadata.

    ``timestamp`` keeps the chain's native unit: nanoseconds on NEAR,
    seconds on EVM and Solana.
    """

    model_config = ConfigDict(frozen=True)

    name: EventName
    tx_hash: str = Field(..., min_length=1)
    tx_index: int = Field(default=0, ge=0)
    timestamp: int = Field(..., ge=0)


PushData = Reporter | Case | Address | Asset

ENTITY_TYPES: dict[str, type[Reporter | Case | Address | Asset]] = {
    cls.kind: cls for cls in (Reporter, Case, Address, Asset)
}


class PushPayload(BaseModel):
    """Unit of delivery: one event and the entity snapshot it produced."""

    model_config = ConfigDict(frozen=True)

    event: PushEvent
    data: PushData

    @field_validator("data", mode="before")
    @classmethod
    def unwrap_entity_kind(cls, value: Any) -> Any:
        """Accept the wire form ``{"Reporter": {...}}``."""
        if isinstance(value, dict) and len(value) == 1:
            kind, fields = next(iter(value.items()))
            if kind in ENTITY_TYPES and isinstance(fields, dict):
                return ENTITY_TYPES[kind].model_validate(fields)
        return value

    @field_serializer("data")
    def wrap_entity_kind(self, data: PushData, info: SerializationInfo) -> dict[str, Any]:
        return {data.kind: data.model_dump(mode=info.mode)}
