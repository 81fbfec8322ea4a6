"""Chain-agnostic snapshots of HAPI entities."""

from enum import Enum
from typing import ClassVar, TypeVar
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_serializer


class Category(str, Enum):
    """Address and asset risk category."""

    NONE = "None"
    WALLET_SERVICE = "WalletService"
    MERCHANT_SERVICE = "MerchantService"
    MINING_POOL = "MiningPool"
    EXCHANGE = "Exchange"
    DEFI = "DeFi"
    OTC_BROKER = "OTCBroker"
    ATM = "ATM"
    GAMBLING = "Gambling"
    ILLICIT_ORGANIZATION = "IllicitOrganization"
    MIXER = "Mixer"
    DARKNET_SERVICE = "DarknetService"
    SCAM = "Scam"
    RANSOMWARE = "Ransomware"
    THEFT = "Theft"
    COUNTERFEIT = "Counterfeit"
    TERRORIST_FINANCING = "TerroristFinancing"
    SANCTIONS = "Sanctions"
    CHILD_ABUSE = "ChildAbuse"
    HACKER = "Hacker"
    HIGH_RISK_JURISDICTION = "HighRiskJurisdiction"


class ReporterRole(str, Enum):
    """Reporter role."""

    VALIDATOR = "Validator"
    TRACER = "Tracer"
    PUBLISHER = "Publisher"
    AUTHORITY = "Authority"


class ReporterStatus(str, Enum):
    """Reporter lifecycle status."""

    INACTIVE = "Inactive"
    ACTIVE = "Active"
    UNSTAKING = "Unstaking"


class CaseStatus(str, Enum):
    """Case status."""

    CLOSED = "Closed"
    OPEN = "Open"


E = TypeVar("E", bound=Enum)

# Contract enums are encoded as their declaration index
CATEGORIES: list[Category] = list(Category)
REPORTER_ROLES: list[ReporterRole] = list(ReporterRole)
REPORTER_STATUSES: list[ReporterStatus] = list(ReporterStatus)
CASE_STATUSES: list[CaseStatus] = list(CaseStatus)


def enum_at(members: list[E], index: int) -> E:
    """Look up a contract enum by its declaration index.

    Raises:
        ValueError: If the index is out of range
    """
    if not 0 <= index < len(members):
        raise ValueError(f"Invalid {type(members[0]).__name__} index: {index}")
    return members[index]


def uuid_from_u128(value: int | str) -> UUID:
    """Convert a u128 contract id (int or decimal string) to a UUID."""
    return UUID(int=int(value))


class Entity(BaseModel):
    """Base class for entity snapshots."""

    model_config = ConfigDict(frozen=True)

    kind: ClassVar[str]


class Reporter(Entity):
    """Reporter snapshot."""

    kind: ClassVar[str] = "Reporter"

    id: UUID
    account: str
    role: ReporterRole
    status: ReporterStatus
    name: str
    url: str
    stake: int = Field(ge=0)
    unlock_timestamp: int = Field(ge=0)

    # u256 values do not survive JSON number parsing on the receiver
    @field_serializer("stake")
    def serialize_stake(self, stake: int) -> str:
        return str(stake)


class Case(Entity):
    """Case snapshot."""

    kind: ClassVar[str] = "Case"

    id: UUID
    name: str
    url: str
    status: CaseStatus
    reporter_id: UUID


class Address(Entity):
    """Address snapshot."""

    kind: ClassVar[str] = "Address"

    address: str
    case_id: UUID
    reporter_id: UUID
    risk: int = Field(ge=0, le=10)
    category: Category
    confirmations: int = Field(ge=0)


class Asset(Entity):
    """Asset snapshot."""

    kind: ClassVar[str] = "Asset"

    address: str
    asset_id: str
    case_id: UUID
    reporter_id: UUID
    risk: int = Field(ge=0, le=10)
    category: Category
    confirmations: int = Field(ge=0)
