from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from .errors import ExternalWriteError
from .room_types import MatchReward
from .room_utils import mask_identity
from .stores import ProfileStore

logger = logging.getLogger(__name__)


@dataclass
class SettlementReport:
    room_id: str
    applied: dict[str, dict[str, Any]] = field(default_factory=dict)
    failed: dict[str, ExternalWriteError] = field(default_factory=dict)


async def apply_reward(profiles: ProfileStore, reward: MatchReward) -> dict[str, Any]:
    try:
        updated = await profiles.apply_match_reward(reward)
    except Exception as exc:
        raise ExternalWriteError(f"Profile update failed: {exc!r}") from exc
    if updated is None:
        raise ExternalWriteError("Profile not found", code="PROFILE_NOT_FOUND")
    return updated


async def settle_match(
    profiles: ProfileStore,
    room_id: str,
    rewards: list[MatchReward],
) -> SettlementReport:
    """Write every participant's reward independently.

    One failed write is logged and recorded in the report; it never stops the
    writes for the other participants and is not retried.
    """
    report = SettlementReport(room_id=room_id)
    for reward in rewards:
        try:
            report.applied[reward.user_id] = await apply_reward(profiles, reward)
        except ExternalWriteError as exc:
            report.failed[reward.user_id] = exc
            logger.exception(
                "Failed to apply match reward room=%s user=%s rank=%s code=%s",
                room_id,
                mask_identity(reward.user_id),
                reward.rank,
                exc.code,
            )

    logger.info(
        "Match settled room=%s applied=%s failed=%s",
        room_id,
        len(report.applied),
        len(report.failed),
    )
    return report
