"""
Campaign domain for spire-sync.

Models for campaigns, entities and relationships, plus the stress and
fallout rules. Editing operations live in ``campaign.operations``.
"""

from .models import (
    ActorRole,
    Campaign,
    CampaignSet,
    Entity,
    EntityKind,
    Fallout,
    Relationship,
    RulesProfile,
    SessionLog,
    SECTION_NAMES,
    STRESS_TRACKS,
    generate_id,
)
from .rules import RulesConfig, get_rules_config, maybe_trigger_fallout, total_stress_for_fallout

__all__ = [
    'ActorRole',
    'Campaign',
    'CampaignSet',
    'Entity',
    'EntityKind',
    'Fallout',
    'Relationship',
    'RulesProfile',
    'SessionLog',
    'SECTION_NAMES',
    'STRESS_TRACKS',
    'generate_id',
    'RulesConfig',
    'get_rules_config',
    'maybe_trigger_fallout',
    'total_stress_for_fallout',
]
