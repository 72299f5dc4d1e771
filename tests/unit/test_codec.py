"""
Unit tests for the snapshot codec.
"""

import pytest

from spire_sync.campaign.models import CampaignSet
from spire_sync.storage.codec import SnapshotCodec
from spire_sync.utils.errors import SnapshotCorrupt, StorageWriteFailure


class TestSnapshotCodec:
    """Test encoding, decoding and isolated copies."""

    def test_encode_decode_preserves_campaigns(self, codec, sample_campaign_set):
        """Decoded text compares equal to the set it came from."""
        text = codec.encode(sample_campaign_set)
        decoded = codec.decode(text)

        assert decoded == sample_campaign_set
        assert decoded.active.entity("pc-1").fields == {"class": "Azurite"}

    def test_encode_unserializable_value(self, codec, sample_campaign_set):
        """Values JSON cannot represent raise StorageWriteFailure."""
        sample_campaign_set.active.entity("pc-1").fields["portrait"] = object()

        with pytest.raises(StorageWriteFailure) as exc_info:
            codec.encode(sample_campaign_set)

        assert exc_info.value.is_retryable

    def test_encode_refuses_mistyped_value(self, codec, sample_campaign_set):
        """A payload that would not decode again is never produced."""
        sample_campaign_set.active.relationship("rel-1").strength = "strong"

        with pytest.raises(StorageWriteFailure):
            codec.encode(sample_campaign_set)

    @pytest.mark.parametrize("text", ["not json", '{"campaigns": []}', '{"campaigns": {"c": {}}}'])
    def test_decode_malformed(self, codec, text):
        with pytest.raises(SnapshotCorrupt):
            codec.decode(text)

    def test_clone_is_independent(self, codec, sample_campaign_set):
        """Mutating a clone never reaches the original."""
        clone = codec.clone(sample_campaign_set)
        clone.active.entity("pc-1").fields["class"] = "Knight"
        clone.active.entities.pop("npc-1")

        original = sample_campaign_set.active
        assert original.entity("pc-1").fields["class"] == "Azurite"
        assert "npc-1" in original.entities

    def test_snapshot_campaign_is_deep(self, codec, sample_campaign_set):
        campaign = sample_campaign_set.active
        snapshot = codec.snapshot_campaign(campaign)

        campaign.entity("pc-1").stress_filled["blood"].append(0)
        campaign.relationships.clear()

        assert snapshot.entity("pc-1").stress_filled["blood"] == []
        assert "rel-1" in snapshot.relationships

    def test_snapshot_relationship_absent(self, codec):
        assert codec.snapshot_relationship(None) is None
        assert codec.restore_relationship(None) is None

    def test_snapshot_section_is_deep(self, codec, sample_campaign_set):
        entity = sample_campaign_set.active.entity("pc-1")
        entity.tasks.append({"title": "Find the cell", "done": False})

        snapshot = codec.snapshot_section(entity, "tasks")
        entity.tasks[0]["done"] = True

        assert snapshot == [{"title": "Find the cell", "done": False}]

    def test_restore_campaign_from_each_form(self, codec, sample_campaign_set):
        """Models, dicts and JSON text all restore to an equal campaign."""
        campaign = sample_campaign_set.active

        from_model = codec.restore_campaign(campaign)
        from_dict = codec.restore_campaign(campaign.model_dump())
        from_text = codec.restore_campaign(campaign.model_dump_json())

        assert from_model == from_dict == from_text == campaign
        assert from_model is not campaign

    def test_restore_campaign_rejects_garbage(self, codec):
        with pytest.raises(SnapshotCorrupt):
            codec.restore_campaign({"name": "missing id"})

        with pytest.raises(SnapshotCorrupt):
            codec.restore_campaign(42)

    def test_restore_section_validation(self, codec):
        items = [{"name": "Knife"}]
        restored = codec.restore_section("inventory", items)

        assert restored == items
        assert restored is not items

        with pytest.raises(SnapshotCorrupt):
            codec.restore_section("inventory", "Knife")
        with pytest.raises(SnapshotCorrupt):
            codec.restore_section("inventory", ["Knife"])
        with pytest.raises(SnapshotCorrupt):
            codec.restore_section("spells", [])

    def test_default_set_round_trip(self):
        codec = SnapshotCodec()
        default = CampaignSet.default()

        decoded = codec.decode(codec.encode(default))

        assert decoded.active_campaign_id == default.active_campaign_id
        assert decoded.active.name == "New Campaign"
