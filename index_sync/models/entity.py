"""Pydantic models for the source entities tracked by the synchronizer."""

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Chain(str, Enum):
    """Source partitions (database schemas) rows can be read from."""

    SEPOLIA = "sepolia"
    MAINNET = "mainnet"
    FILECOIN = "filecoin"
    OPTIMISM = "optimism"
    METIS = "metis"
    LOCALTESTNET = "localtestnet"


ALLOWED_CHAINS: frozenset[str] = frozenset(chain.value for chain in Chain)


class EntityKind(str, Enum):
    """Entity kinds tracked in the source and mirrored into the search index."""

    DRIP_LISTS = "drip_lists"
    PROJECTS = "projects"


class Entity(BaseModel):
    """Fields shared by every entity kind read from the source."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str = Field(default=..., description="Identifier, unique within its kind and chain")
    name: str | None = Field(default=None, description="Display name")
    description: str | None = Field(default=None, description="Free-text description")
    owner_address: str | None = Field(
        default=None, alias="ownerAddress", description="Owner wallet address"
    )
    owner_account_id: str | None = Field(
        default=None, alias="ownerAccountId", description="Owner account identifier"
    )
    is_visible: bool = Field(default=True, alias="isVisible", description="Visibility flag")
    updated_at: datetime = Field(
        default=..., alias="updatedAt", description="Last modification timestamp"
    )
    chain: Chain = Field(default=..., description="Partition the row was read from")

    @field_validator("id", "owner_account_id", mode="before")
    @classmethod
    def coerce_identifier(cls, v: object) -> object:
        """Numeric identifiers come back from the database as ints or Decimals."""
        if v is None or isinstance(v, str):
            return v
        return str(v)

    @field_validator("is_visible", mode="before")
    @classmethod
    def default_visibility(cls, v: object) -> object:
        return True if v is None else v

    @field_validator("updated_at")
    @classmethod
    def ensure_timezone(cls, v: datetime) -> datetime:
        """Treat naive timestamps as UTC."""
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    @property
    def key(self) -> tuple[Chain, str]:
        """Identity of the entity across all chains."""
        return (self.chain, self.id)


class DripList(Entity):
    """List-like entity stored in the ``DripLists`` table."""

    model_config = {
        "json_schema_extra": {
            "example": {
                "id": "31017053188743270087903616719386049542153546164393126887617826443552",
                "name": "Open source essentials",
                "description": "Funding the libraries we depend on",
                "ownerAddress": "0x1a2b3c",
                "ownerAccountId": "1234",
                "isVisible": True,
                "updatedAt": "2024-05-01T12:00:00Z",
                "chain": "mainnet",
            }
        }
    }


class Project(Entity):
    """Record-like entity stored in the ``GitProjects`` table."""

    url: str | None = Field(default=None, description="Repository URL")
    avatar_cid: str | None = Field(default=None, alias="avatarCid", description="Avatar IPFS CID")
    emoji: str | None = Field(default=None, description="Project emoji")
    color: str | None = Field(default=None, description="Project color")
    verification_status: str | None = Field(
        default=None, alias="verificationStatus", description="Claim verification status"
    )

    model_config = {
        "json_schema_extra": {
            "example": {
                "id": "80912999152719502845256218883417264617436428366683443380683636736",
                "name": "octocat/hello-world",
                "url": "https://github.com/octocat/hello-world",
                "ownerAddress": "0x1a2b3c",
                "ownerAccountId": "1234",
                "verificationStatus": "Claimed",
                "updatedAt": "2024-05-01T12:00:00Z",
                "chain": "mainnet",
            }
        }
    }
