"""Machine upgrade tiers.

Level 1: Basic - entry upgrades only
Level 2: Advanced - reached with 2 upgrades or 1000 invested
Level 3: Premium - reached with 4 upgrades or 2000 invested
"""

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Dict, List, Optional


class MachineLevel(IntEnum):
    """Upgrade tier of a machine."""

    BASIC = 1
    ADVANCED = 2
    PREMIUM = 3

    @property
    def display_name(self) -> str:
        return self.name.capitalize()


# (upgrade count, total investment) needed to reach each tier
LEVEL_THRESHOLDS: Dict[MachineLevel, tuple] = {
    MachineLevel.ADVANCED: (2, 1000.0),
    MachineLevel.PREMIUM: (4, 2000.0),
}


@dataclass
class MachineProgress:
    """Upgrade bookkeeping for one machine."""

    upgrades: int = 0
    total_investment: float = 0.0
    level: MachineLevel = MachineLevel.BASIC


@dataclass
class NextLevel:
    """What a machine still needs for the next tier."""

    level: MachineLevel
    required_upgrades: int
    required_investment: float
    unlocks: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict:
        return {
            "level": int(self.level),
            "requiredUpgrades": self.required_upgrades,
            "requiredInvestment": round(self.required_investment, 2),
            "unlocks": list(self.unlocks),
        }


def level_for(upgrade_count: int, total_investment: float) -> MachineLevel:
    """Get the tier earned by an upgrade count or an investment total."""
    count, invested = LEVEL_THRESHOLDS[MachineLevel.PREMIUM]
    if upgrade_count >= count or total_investment >= invested:
        return MachineLevel.PREMIUM

    count, invested = LEVEL_THRESHOLDS[MachineLevel.ADVANCED]
    if upgrade_count >= count or total_investment >= invested:
        return MachineLevel.ADVANCED

    return MachineLevel.BASIC


def next_level_requirements(
    progress: MachineProgress, unlocks: Optional[List[str]] = None
) -> Optional[NextLevel]:
    """Get the remaining upgrades and investment for the next tier.

    Returns None at PREMIUM.
    """
    if progress.level >= MachineLevel.PREMIUM:
        return None

    target = MachineLevel(progress.level + 1)
    count, invested = LEVEL_THRESHOLDS[target]
    return NextLevel(
        level=target,
        required_upgrades=max(0, count - progress.upgrades),
        required_investment=max(0.0, invested - progress.total_investment),
        unlocks=list(unlocks or []),
    )
