"""
Per-context session state.

One ``SessionContext`` exists per execution context (a window, a device).
It is built at startup and handed to every component that needs it; there
is no module-level session state.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional
import uuid

from .campaign.models import ActorRole, Campaign, CampaignSet


@dataclass
class SessionContext:
    """Who is editing, and the campaigns they have open."""
    user_id: str
    actor_label: str = "Anonymous"
    actor_role: ActorRole = ActorRole.GM
    client_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    campaigns: CampaignSet = field(default_factory=CampaignSet)
    flags: Dict[str, Any] = field(default_factory=dict)

    @property
    def active_campaign(self) -> Optional[Campaign]:
        return self.campaigns.active

    def require_active_campaign(self) -> Campaign:
        campaign = self.campaigns.active
        if campaign is None:
            raise LookupError("No active campaign")
        return campaign

    def replace_campaigns(self, campaigns: CampaignSet) -> None:
        """Swap in a freshly loaded set, keeping the open campaign if it still exists."""
        active_id = self.campaigns.active_campaign_id
        if active_id is not None and active_id in campaigns.campaigns:
            campaigns.active_campaign_id = active_id
        elif campaigns.active_campaign_id not in campaigns.campaigns:
            campaigns.active_campaign_id = next(iter(campaigns.campaigns), None)
        self.campaigns = campaigns
