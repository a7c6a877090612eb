"""Pydantic models for Node instances and their enumerated tags."""

from enum import Enum

from pydantic import BaseModel, Field


class NodeCategory(str, Enum):
    """Kind of system a node represents."""

    PMS = "PMS"
    CRS = "CRS"
    CM = "CM"
    BOOKING_ENGINE = "BookingEngine"
    RMS = "RMS"
    SWITCH = "Switch"
    AGGREGATOR = "Aggregator"
    DISTRIBUTOR = "Distributor"
    META = "Meta"
    OTA = "OTA"
    WHOLESALER = "Wholesaler"
    CMS = "CMS"
    ENRICHMENT = "Enrichment"
    PAYMENT_GATEWAY = "PaymentGateway"
    OTHER = "Other"


class Direction(str, Enum):
    """Which side of the distribution chain a node sits on."""

    SUPPLY = "Supply"
    DEMAND = "Demand"
    SUPPLY_SWITCH = "Supply Switch"
    DEMAND_SWITCH = "Demand Switch"
    NONE = "None"


class ProtocolSupported(str, Enum):
    PUSH_API = "PushAPI"
    PULL_API = "PullAPI"
    LIVE_SEARCH = "LiveSearch"
    OTHER = "Other"


class DataTypeSupported(str, Enum):
    AVAILABILITY = "Availability"
    RATES = "Rates"
    RESTRICTIONS = "Restrictions"
    BOOKINGS = "Bookings"
    CONTENT = "Content"
    POLICIES = "Policies"
    PAYMENT_DETAILS = "PaymentDetails"
    ANALYTICS = "Analytics"


class NodeCreate(BaseModel):
    """Request model for creating a node."""

    node_name: str = Field(..., min_length=1)
    entity_id: str
    node_category: NodeCategory
    direction: Direction
    node_aliases: list[str] = Field(default_factory=list)
    connects_to: list[str] = Field(default_factory=list)
    is_active: bool = True
    protocols_supported: list[ProtocolSupported] = Field(default_factory=list)
    data_types_supported: list[DataTypeSupported] = Field(default_factory=list)
    notes: str = ""


class NodeUpdate(BaseModel):
    """Request model for a partial node update."""

    node_name: str | None = None
    entity_id: str | None = None
    node_category: NodeCategory | None = None
    direction: Direction | None = None
    node_aliases: list[str] | None = None
    connects_to: list[str] | None = None
    is_active: bool | None = None
    protocols_supported: list[ProtocolSupported] | None = None
    data_types_supported: list[DataTypeSupported] | None = None
    notes: str | None = None


class Node(BaseModel):
    """A system instance owned by exactly one entity.

    ``connects_to`` holds directed edges to other node ids. Targets may no
    longer exist after deletions or rollbacks; such dangling ids are kept.
    """

    node_id: str
    node_name: str
    entity_id: str
    entity_name: str
    node_category: NodeCategory
    direction: Direction
    node_aliases: list[str] = Field(default_factory=list)
    connects_to: list[str] = Field(default_factory=list)
    is_active: bool = True
    protocols_supported: list[ProtocolSupported] = Field(default_factory=list)
    data_types_supported: list[DataTypeSupported] = Field(default_factory=list)
    notes: str = ""
    source_batch_id: str | None = None
    created_at: str
    updated_at: str


class NodeSearch(BaseModel):
    """Filters for node search."""

    entity_name: str | None = None
    node_category: list[NodeCategory] | None = None
    direction: list[Direction] | None = None
    protocols_supported: list[ProtocolSupported] | None = None
    data_types_supported: list[DataTypeSupported] | None = None
    is_active: bool | None = None
    search_text: str | None = None
