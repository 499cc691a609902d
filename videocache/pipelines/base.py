"""Platform adapter contract.

One adapter per platform owns everything provider-shaped: actor id, job
variants and their params, poll policy, and the document → MediaItem mapping.
"""

import math
from typing import Any

from videocache.orchestrator.schemas import MediaItem
from videocache.services.job_poller import PollPolicy
from videocache.utils.accessors import Accessor, first_non_empty, to_str

# Fetch margin over `limit` spread across variants; overlap between variants eats into it.
QUOTA_MARGIN = 1.5


def variant_quota(limit: int, variants: int, base_quota: int = 0) -> int:
    """Per-variant item quota covering `limit` with margin."""
    if variants <= 0:
        raise ValueError("variants must be positive")
    return max(base_quota, math.ceil(limit * QUOTA_MARGIN / variants))


class PlatformAdapter:
    """Base adapter. Subclasses set the class attributes and implement build_params/adapt."""

    platform: str = ""
    actor_id: str = ""
    variants: tuple[str, ...] = ("default",)
    base_quota: int = 0
    policy: PollPolicy = PollPolicy()
    id_fields: tuple[Accessor, ...] = ()

    def build_params(self, query: str, date_range: str, variant: str, quota: int) -> dict[str, Any]:
        raise NotImplementedError

    def extract_id(self, doc: dict) -> str | None:
        return to_str(first_non_empty(doc, self.id_fields))

    def accepts(self, doc: dict) -> bool:
        return True

    def adapt(self, doc: dict) -> MediaItem:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"<{type(self).__name__} platform={self.platform} variants={len(self.variants)}>"
