"""
Snapshot codec.

Converts the campaign set to and from its durable text form and produces
isolated copies for history entries. Copies are deep clones over the typed
models, never shared structure with the live campaign.
"""

import copy
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ValidationError as PydanticValidationError
from pydantic_core import PydanticSerializationError

from ..campaign.models import Campaign, CampaignSet, Entity, Relationship, SECTION_NAMES
from ..utils.errors import SnapshotCorrupt, StorageWriteFailure
from ..utils.logging import get_logger


logger = get_logger("spire-sync.storage.codec")


SnapshotSource = Union[BaseModel, Dict[str, Any], str]


class SnapshotCodec:
    """Serializer and cloner for the campaign aggregate."""

    def encode(self, campaign_set: CampaignSet) -> str:
        """
        Serialize a campaign set to JSON text.

        Raises:
            StorageWriteFailure: The set contains values that cannot be
                serialized or do not match their declared types
        """
        try:
            return campaign_set.model_dump_json(warnings="error")
        except (PydanticSerializationError, TypeError, ValueError) as e:
            logger.warning("encode_failed", error=str(e))
            raise StorageWriteFailure(f"Cannot serialize campaigns: {e}", cause=e) from e

    def decode(self, text: Union[str, bytes]) -> CampaignSet:
        """
        Parse JSON text back into a campaign set.

        Raises:
            SnapshotCorrupt: The text is not a valid campaign set
        """
        try:
            return CampaignSet.model_validate_json(text)
        except PydanticValidationError as e:
            raise SnapshotCorrupt(f"Stored campaigns are malformed: {e.error_count()} errors", cause=e) from e

    # Isolated copies

    def clone(self, campaign_set: CampaignSet) -> CampaignSet:
        return campaign_set.model_copy(deep=True)

    def snapshot_campaign(self, campaign: Campaign) -> Campaign:
        return campaign.model_copy(deep=True)

    def snapshot_relationship(self, relationship: Optional[Relationship]) -> Optional[Relationship]:
        """Copy one relationship; None records that it did not exist."""
        if relationship is None:
            return None
        return relationship.model_copy(deep=True)

    def snapshot_section(self, entity: Entity, section: str) -> List[Dict[str, Any]]:
        """Copy one array-valued section of an entity."""
        return copy.deepcopy(entity.section(section))

    # Validating restores

    def restore_campaign(self, snapshot: SnapshotSource) -> Campaign:
        """Validate a campaign snapshot and return a fresh copy."""
        return self._restore_model(Campaign, snapshot)

    def restore_relationship(self, snapshot: Optional[SnapshotSource]) -> Optional[Relationship]:
        if snapshot is None:
            return None
        return self._restore_model(Relationship, snapshot)

    def restore_section(self, section: str, snapshot: Any) -> List[Dict[str, Any]]:
        """Validate a section snapshot: a list of mappings."""
        if section not in SECTION_NAMES:
            raise SnapshotCorrupt(f"Unknown section: {section!r}")
        if not isinstance(snapshot, list) or not all(isinstance(item, dict) for item in snapshot):
            raise SnapshotCorrupt(f"Section snapshot for {section!r} is not a list of items")
        return copy.deepcopy(snapshot)

    def _restore_model(self, model: type, snapshot: SnapshotSource):
        try:
            if isinstance(snapshot, model):
                return snapshot.model_copy(deep=True)
            if isinstance(snapshot, str):
                return model.model_validate_json(snapshot)
            if isinstance(snapshot, dict):
                return model.model_validate(snapshot)
        except PydanticValidationError as e:
            raise SnapshotCorrupt(
                f"{model.__name__} snapshot failed validation", cause=e
            ) from e
        raise SnapshotCorrupt(
            f"{model.__name__} snapshot has unexpected type {type(snapshot).__name__}"
        )
