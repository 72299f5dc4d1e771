"""
Campaign data model.

The campaign set is the aggregate persisted per user. Everything here is a
pydantic model so that durable payloads and history snapshots are
validated on the way back in.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
import uuid

from pydantic import BaseModel, Field


STRESS_TRACKS = ("blood", "mind", "silver", "shadow", "reputation")
SECTION_NAMES = ("tasks", "inventory", "bonds")


def generate_id(prefix: str = "id") -> str:
    """Generate a short unique id such as ``pc-3f2a9c1d0b7e``."""
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


class EntityKind(str, Enum):
    """Kinds of campaign entities."""
    PC = "pc"
    NPC = "npc"
    ORGANISATION = "organisation"

    @property
    def display_name(self) -> str:
        return {"pc": "PC", "npc": "NPC", "organisation": "Organisation"}[self.value]


class RulesProfile(str, Enum):
    """Rules profiles understood by the rules engine."""
    CORE = "Core"
    QUICKSTART = "Quickstart"
    CUSTOM = "Custom"


class ActorRole(str, Enum):
    """Membership role of the person making an edit."""
    GM = "gm"
    PLAYER = "player"


class Fallout(BaseModel):
    """Fallout suffered by a character."""
    id: str = Field(default_factory=lambda: generate_id("fallout"))
    severity: str
    track: str
    name: str = ""
    roll: Optional[int] = None
    total_stress: Optional[int] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)


class Entity(BaseModel):
    """A PC, NPC or organisation."""
    id: str
    kind: EntityKind
    name: str
    fields: Dict[str, Any] = Field(default_factory=dict)
    tasks: List[Dict[str, Any]] = Field(default_factory=list)
    inventory: List[Dict[str, Any]] = Field(default_factory=list)
    bonds: List[Dict[str, Any]] = Field(default_factory=list)
    stress_filled: Dict[str, List[int]] = Field(
        default_factory=lambda: {track: [] for track in STRESS_TRACKS}
    )
    fallout: List[Fallout] = Field(default_factory=list)

    def section(self, name: str) -> List[Dict[str, Any]]:
        """Return one of the array-valued sections by name."""
        if name not in SECTION_NAMES:
            raise KeyError(f"Unknown section: {name}")
        return getattr(self, name)


class Relationship(BaseModel):
    """A directed link between two entities."""
    id: str
    source_id: str
    target_id: str
    kind: str = "neutral"
    label: str = ""
    strength: int = 0
    notes: str = ""


class SessionLog(BaseModel):
    """A play-session log entry."""
    id: str = Field(default_factory=lambda: generate_id("log"))
    title: str
    body: str = ""
    created_at: datetime = Field(default_factory=datetime.utcnow)


class Campaign(BaseModel):
    """One game: entities, relationships, settings and session logs."""
    id: str
    name: str = "New Campaign"
    rules_profile: RulesProfile = RulesProfile.CORE
    custom_rules: Dict[str, bool] = Field(default_factory=dict)
    settings: Dict[str, Any] = Field(default_factory=dict)
    entities: Dict[str, Entity] = Field(default_factory=dict)
    relationships: Dict[str, Relationship] = Field(default_factory=dict)
    session_logs: List[SessionLog] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=datetime.utcnow)

    def entity(self, entity_id: str) -> Entity:
        try:
            return self.entities[entity_id]
        except KeyError:
            raise KeyError(f"Unknown entity: {entity_id}") from None

    def relationship(self, relationship_id: str) -> Relationship:
        try:
            return self.relationships[relationship_id]
        except KeyError:
            raise KeyError(f"Unknown relationship: {relationship_id}") from None

    def relationships_touching(self, entity_id: str) -> List[str]:
        """Ids of relationships with the entity at either end."""
        return [
            rel_id for rel_id, rel in self.relationships.items()
            if entity_id in (rel.source_id, rel.target_id)
        ]


class CampaignSet(BaseModel):
    """Every campaign owned by one user, plus which one is open."""
    campaigns: Dict[str, Campaign] = Field(default_factory=dict)
    active_campaign_id: Optional[str] = None

    @classmethod
    def default(cls) -> "CampaignSet":
        """The set a brand-new user starts with."""
        campaign = Campaign(id=generate_id("camp"))
        return cls(campaigns={campaign.id: campaign}, active_campaign_id=campaign.id)

    @property
    def active(self) -> Optional[Campaign]:
        if self.active_campaign_id is None:
            return None
        return self.campaigns.get(self.active_campaign_id)
