"""Stress and fallout rules.

Pure functions of entity state; randomness comes from an injected
``rng`` returning floats in [0, 1).
"""

from dataclasses import dataclass, asdict
from typing import Callable, Dict, Optional

from .models import Campaign, Entity, Fallout, RulesProfile, STRESS_TRACKS
from ..utils.logging import get_logger

logger = get_logger("spire-sync.rules")

TRACK_CAP = 10


@dataclass(frozen=True)
class RulesConfig:
    difficulty_downgrades: bool = True
    fallout_check_on_stress: bool = True
    clear_stress_on_fallout: bool = True

    def to_dict(self) -> Dict[str, bool]:
        return asdict(self)


def get_rules_config(campaign: Optional[Campaign]) -> RulesConfig:
    """Resolve the effective rules for a campaign's profile."""
    defaults = RulesConfig()
    if campaign is None:
        return defaults

    if campaign.rules_profile == RulesProfile.QUICKSTART:
        return RulesConfig(
            difficulty_downgrades=True,
            fallout_check_on_stress=False,
            clear_stress_on_fallout=False,
        )

    if campaign.rules_profile == RulesProfile.CUSTOM:
        merged = defaults.to_dict()
        merged.update({k: v for k, v in campaign.custom_rules.items() if k in merged})
        return RulesConfig(**merged)

    return defaults


def total_stress_for_fallout(entity: Entity) -> int:
    """Sum of filled stress boxes, each track clamped at 10."""
    return sum(
        min(TRACK_CAP, len(entity.stress_filled.get(track, [])))
        for track in STRESS_TRACKS
    )


def fallout_severity_for_total_stress(total: int) -> str:
    if total >= 9:
        return "Severe"
    if total >= 5:
        return "Moderate"
    return "Minor"


def stress_clear_amount_for_severity(severity: str) -> int:
    if severity == "Severe":
        return 7
    if severity == "Moderate":
        return 5
    return 3


def mark_stress(entity: Entity, track: str, amount: int) -> int:
    """Fill ``amount`` more boxes on a track. Returns the new box count."""
    if track not in STRESS_TRACKS:
        raise ValueError(f"Unknown stress track: {track}")
    boxes = entity.stress_filled.setdefault(track, [])
    start = len(boxes)
    boxes.extend(range(start, start + max(0, amount)))
    return len(boxes)


def clear_stress_for_fallout(entity: Entity, track: str, amount: int) -> int:
    """Clear up to ``amount`` boxes, starting with the track that triggered fallout.

    Returns the number of boxes cleared.
    """
    order = [track] + [t for t in STRESS_TRACKS if t != track]
    cleared = 0
    for name in order:
        boxes = entity.stress_filled.get(name, [])
        while boxes and cleared < amount:
            boxes.pop()
            cleared += 1
        if cleared >= amount:
            break
    return cleared


def maybe_trigger_fallout(
    entity: Entity,
    track: str,
    amount: int,
    campaign: Optional[Campaign],
    rng: Callable[[], float],
) -> Optional[Fallout]:
    """Roll a d10 against total stress; below the total means fallout.

    Mutates ``entity`` in place when fallout happens.
    """
    config = get_rules_config(campaign)
    if not config.fallout_check_on_stress:
        return None

    total = total_stress_for_fallout(entity)
    roll = int(rng() * 10) + 1
    if roll >= total:
        logger.debug("fallout_avoided", entity_id=entity.id, roll=roll, total=total)
        return None

    severity = fallout_severity_for_total_stress(total)
    fallout = Fallout(severity=severity, track=track, roll=roll, total_stress=total)
    entity.fallout.append(fallout)

    cleared = 0
    if config.clear_stress_on_fallout:
        cleared = clear_stress_for_fallout(
            entity, track, stress_clear_amount_for_severity(severity)
        )

    logger.info(
        "fallout_triggered",
        entity_id=entity.id,
        track=track,
        stress_added=amount,
        roll=roll,
        total=total,
        severity=severity,
        stress_cleared=cleared,
    )
    return fallout
