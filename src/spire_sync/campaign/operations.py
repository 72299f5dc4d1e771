"""
Campaign editing operations.

Each operation validates its input against the live campaign, then runs
through ``SyncController.mutate`` so the edit is snapshotted into the
right history scope and persisted. Validation failures raise before
anything is touched.
"""

import copy
import random
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError

from ..history.manager import HistoryScope
from ..utils.errors import ValidationError
from .models import (
    SECTION_NAMES,
    STRESS_TRACKS,
    Campaign,
    CampaignSet,
    Entity,
    EntityKind,
    Relationship,
    RulesProfile,
    SessionLog,
    generate_id,
)
from .rules import mark_stress, maybe_trigger_fallout

if TYPE_CHECKING:
    from ..sync.controller import SaveOutcome, SyncController


class CampaignOperations:
    """User-level edits on the active campaign."""

    def __init__(self, controller: "SyncController", rng: Callable[[], float] = random.random):
        """
        Args:
            controller: Persists and records every edit
            rng: Random source for fallout rolls, returning floats in [0, 1)
        """
        self.controller = controller
        self.rng = rng

    @property
    def campaign(self) -> Campaign:
        return self.controller.session.require_active_campaign()

    def _scope(self) -> HistoryScope:
        return HistoryScope.campaign(self.campaign.id)

    def _require_entity(self, entity_id: str) -> Entity:
        entity = self.campaign.entities.get(entity_id)
        if entity is None:
            raise ValidationError("entity_id", entity_id, "no such entity")
        return entity

    def _require_relationship(self, relationship_id: str) -> Relationship:
        relationship = self.campaign.relationships.get(relationship_id)
        if relationship is None:
            raise ValidationError("relationship_id", relationship_id, "no such relationship")
        return relationship

    # Campaigns

    async def create_campaign(
        self,
        name: str = "New Campaign",
        rules_profile: RulesProfile = RulesProfile.CORE,
        activate: bool = True,
    ) -> "SaveOutcome":
        """Add a new campaign to the set. Not undoable."""
        if not name.strip():
            raise ValidationError("name", name, "must not be blank")

        campaign = Campaign(id=generate_id("camp"), name=name.strip(), rules_profile=rules_profile)

        def apply(campaigns: CampaignSet) -> Campaign:
            campaigns.campaigns[campaign.id] = campaign
            if activate or campaigns.active_campaign_id is None:
                campaigns.active_campaign_id = campaign.id
            return campaign

        return await self.controller.mutate_campaigns("Created campaign", apply)

    async def select_campaign(self, campaign_id: str) -> "SaveOutcome":
        campaigns = self.controller.session.campaigns
        if campaign_id not in campaigns.campaigns:
            raise ValidationError("campaign_id", campaign_id, "no such campaign")

        def apply(campaigns: CampaignSet) -> str:
            campaigns.active_campaign_id = campaign_id
            return campaign_id

        return await self.controller.mutate_campaigns("Opened campaign", apply)

    # Entities

    async def add_entity(
        self,
        kind: EntityKind,
        name: str,
        fields: Optional[Dict[str, Any]] = None,
        entity_id: Optional[str] = None,
    ) -> "SaveOutcome":
        kind = EntityKind(kind)
        if not name.strip():
            raise ValidationError("name", name, "must not be blank")
        entity_id = entity_id or generate_id(kind.value)
        if entity_id in self.campaign.entities:
            raise ValidationError("entity_id", entity_id, "already exists")

        entity = Entity(id=entity_id, kind=kind, name=name.strip(), fields=dict(fields or {}))

        def apply(campaign: Campaign) -> Entity:
            campaign.entities[entity.id] = entity
            return entity

        return await self.controller.mutate(self._scope(), f"Created {kind.display_name}", apply)

    async def update_entity(
        self,
        entity_id: str,
        name: Optional[str] = None,
        fields: Optional[Dict[str, Any]] = None,
    ) -> "SaveOutcome":
        """Rename an entity and/or merge new values into its fields."""
        entity = self._require_entity(entity_id)
        if name is not None and not name.strip():
            raise ValidationError("name", name, "must not be blank")

        def apply(campaign: Campaign) -> Entity:
            target = campaign.entity(entity_id)
            if name is not None:
                target.name = name.strip()
            if fields:
                target.fields.update(fields)
            return target

        return await self.controller.mutate(
            self._scope(), f"Updated {entity.kind.display_name}", apply
        )

    async def delete_entity(self, entity_id: str) -> "SaveOutcome":
        """Delete an entity and every relationship touching it."""
        entity = self._require_entity(entity_id)

        def apply(campaign: Campaign) -> List[str]:
            removed = campaign.relationships_touching(entity_id)
            for relationship_id in removed:
                del campaign.relationships[relationship_id]
            del campaign.entities[entity_id]
            return removed

        return await self.controller.mutate(
            self._scope(), f"Deleted {entity.kind.display_name}", apply
        )

    async def edit_section(self, entity_id: str, section: str, items: List[Dict[str, Any]]) -> "SaveOutcome":
        """Replace one array-valued section (tasks, inventory, bonds) of an entity."""
        self._require_entity(entity_id)
        if section not in SECTION_NAMES:
            raise ValidationError("section", section, f"must be one of {', '.join(SECTION_NAMES)}")
        if not all(isinstance(item, dict) for item in items):
            raise ValidationError("items", items, "every item must be a mapping")

        new_items = copy.deepcopy(list(items))

        def apply(campaign: Campaign) -> List[Dict[str, Any]]:
            setattr(campaign.entity(entity_id), section, new_items)
            return new_items

        return await self.controller.mutate(
            HistoryScope.section(entity_id, section), f"Edited {section}", apply
        )

    async def apply_stress(self, entity_id: str, track: str, amount: int) -> "SaveOutcome":
        """
        Mark stress and roll for fallout.

        The fallout roll is part of the same edit, so one undo reverts both.
        The outcome's ``result`` is the Fallout, or None.
        """
        self._require_entity(entity_id)
        if track not in STRESS_TRACKS:
            raise ValidationError("track", track, f"must be one of {', '.join(STRESS_TRACKS)}")
        if amount < 1:
            raise ValidationError("amount", amount, "must be at least 1")

        def apply(campaign: Campaign):
            target = campaign.entity(entity_id)
            mark_stress(target, track, amount)
            return maybe_trigger_fallout(target, track, amount, campaign, self.rng)

        return await self.controller.mutate(self._scope(), "Applied stress", apply)

    # Relationships

    async def add_relationship(
        self,
        source_id: str,
        target_id: str,
        kind: str = "neutral",
        label: str = "",
        strength: int = 0,
        notes: str = "",
    ) -> "SaveOutcome":
        self._require_entity(source_id)
        self._require_entity(target_id)
        if source_id == target_id:
            raise ValidationError("target_id", target_id, "must differ from source_id")

        relationship = Relationship(
            id=generate_id("rel"),
            source_id=source_id,
            target_id=target_id,
            kind=kind,
            label=label,
            strength=strength,
            notes=notes,
        )

        def apply(campaign: Campaign) -> Relationship:
            campaign.relationships[relationship.id] = relationship
            return relationship

        return await self.controller.mutate(self._scope(), "Created relationship", apply)

    async def update_relationship(self, relationship_id: str, **changes: Any) -> "SaveOutcome":
        """Edit label, kind, strength or notes of one relationship."""
        current = self._require_relationship(relationship_id)
        allowed = {"kind", "label", "strength", "notes"}
        unknown = set(changes) - allowed
        if unknown:
            raise ValidationError("changes", sorted(unknown), f"only {', '.join(sorted(allowed))} can change")

        try:
            updated = Relationship.model_validate({**current.model_dump(), **changes})
        except PydanticValidationError as e:
            bad = [".".join(str(part) for part in error["loc"]) for error in e.errors()]
            raise ValidationError(", ".join(bad), changes, "wrong type for relationship") from e

        def apply(campaign: Campaign) -> Relationship:
            target = campaign.relationship(relationship_id)
            for key in changes:
                setattr(target, key, getattr(updated, key))
            return target

        return await self.controller.mutate(
            HistoryScope.relationship(relationship_id), "Edited relationship", apply
        )

    async def delete_relationship(self, relationship_id: str) -> "SaveOutcome":
        self._require_relationship(relationship_id)

        def apply(campaign: Campaign) -> Relationship:
            return campaign.relationships.pop(relationship_id)

        return await self.controller.mutate(self._scope(), "Deleted relationship", apply)

    async def clear_relationships(self) -> "SaveOutcome":
        def apply(campaign: Campaign) -> int:
            count = len(campaign.relationships)
            campaign.relationships.clear()
            return count

        return await self.controller.mutate(self._scope(), "Cleared relationships", apply)

    # Session logs

    async def append_session_log(self, title: str, body: str = "") -> "SaveOutcome":
        if not title.strip():
            raise ValidationError("title", title, "must not be blank")

        log = SessionLog(title=title.strip(), body=body)

        def apply(campaign: Campaign) -> SessionLog:
            campaign.session_logs.append(log)
            return log

        return await self.controller.mutate(self._scope(), "Added session log", apply)
