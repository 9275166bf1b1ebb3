"""Achievement seeder - default milestone catalog for points and sales metrics."""

import logging
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from scoreboard.models.achievement import Achievement, AchievementType
from scoreboard.models.metric import MetricType
from scoreboard.services.achievements import parse_criteria

logger = logging.getLogger(__name__)


def roman_numeral(num: int) -> str:
    """Convert integer to Roman numeral."""
    val = [1000, 900, 500, 400, 100, 90, 50, 40, 10, 9, 5, 4, 1]
    syms = ["M", "CM", "D", "CD", "C", "XC", "L", "XL", "X", "IX", "V", "IV", "I"]
    roman_num = ""
    for i, v in enumerate(val):
        while num >= v:
            roman_num += syms[i]
            num -= v
    return roman_num


def format_threshold(threshold: int) -> str:
    """1500 -> 1.5K, 2000000 -> 2M."""
    if threshold >= 1_000_000:
        return f"{threshold / 1_000_000:.1f}M".replace(".0M", "M")
    elif threshold >= 1_000:
        return f"{threshold / 1_000:.1f}K".replace(".0K", "K")
    return str(threshold)


def calculate_points(tier: int, base: int = 10) -> int:
    """Points awarded for a tier, rounded to a multiple of 5."""
    tier_mult = 1 + (tier - 1) * 0.5 + (tier / 10) ** 2
    return max(5, round(base * tier_mult / 5) * 5)


def generate_tiered_achievements(
    name_template: str,
    description_template: str,
    metric_type: MetricType,
    thresholds: list[int],
    icon: str,
    base_points: int = 10,
) -> list[dict[str, Any]]:
    """Generate a tiered lifetime-total achievement line."""
    achievements = []
    for i, threshold in enumerate(thresholds, 1):
        achievements.append({
            "name": name_template.format(tier=roman_numeral(i)),
            "description": description_template.format(threshold=format_threshold(threshold)),
            "type": AchievementType.MILESTONE.value,
            "icon": icon,
            "points_value": calculate_points(i, base_points),
            "criteria": {"metricType": metric_type.value, "totalRequired": str(threshold)},
        })
    return achievements


def generate_default_achievements() -> list[dict[str, Any]]:
    """Generate the default catalog."""
    achievements = []

    # =============================================================================
    # POINTS
    # =============================================================================

    achievements.append({
        "name": "1000 Points Milestone",
        "description": "Reached 1000 total points",
        "type": AchievementType.MILESTONE.value,
        "icon": "trophy",
        "points_value": 100,
        "criteria": {"metricType": MetricType.POINTS.value, "totalRequired": "1000"},
    })

    achievements.extend(generate_tiered_achievements(
        name_template="Point Collector {tier}",
        description_template="Earn {threshold} points total",
        metric_type=MetricType.POINTS,
        thresholds=[100, 250, 500, 2500, 5000, 10000, 25000, 50000, 100000],
        icon="star",
    ))

    # =============================================================================
    # SALES
    # =============================================================================

    achievements.extend(generate_tiered_achievements(
        name_template="Revenue Builder {tier}",
        description_template="Close {threshold} in total revenue",
        metric_type=MetricType.REVENUE,
        thresholds=[1000, 10000, 50000, 100000, 250000, 500000, 1000000, 5000000],
        icon="chart",
        base_points=20,
    ))

    achievements.extend(generate_tiered_achievements(
        name_template="Deal Closer {tier}",
        description_template="Close {threshold} deals",
        metric_type=MetricType.DEALS,
        thresholds=[1, 5, 10, 25, 50, 100, 250, 500],
        icon="handshake",
        base_points=15,
    ))

    achievements.extend(generate_tiered_achievements(
        name_template="Seat Seller {tier}",
        description_template="Sell {threshold} voice seats",
        metric_type=MetricType.VOICE_SEATS,
        thresholds=[10, 50, 100, 500, 1000, 5000],
        icon="headset",
        base_points=15,
    ))

    # Single-event awards
    achievements.append({
        "name": "Big Ticket",
        "description": "Close a single deal worth 10K or more",
        "type": AchievementType.RECOGNITION.value,
        "icon": "gem",
        "points_value": 50,
        "criteria": {"metricType": MetricType.REVENUE.value, "minValue": "10000"},
    })
    achievements.append({
        "name": "Whale Hunter",
        "description": "Close a single deal worth 100K or more",
        "type": AchievementType.RECOGNITION.value,
        "icon": "anchor",
        "points_value": 250,
        "criteria": {"metricType": MetricType.REVENUE.value, "minValue": "100000"},
    })

    return achievements


def get_achievement_count() -> int:
    return len(generate_default_achievements())


async def seed_achievements(db: AsyncSession, force: bool = False) -> int:
    """
    Insert default achievements that are not in the catalog yet (matched by name).

    With force, existing default entries get their criteria, description and
    points refreshed. Grants are left untouched. Returns the number of new rows.
    """
    result = await db.execute(select(Achievement))
    existing = {a.name: a for a in result.scalars().all()}

    created = 0
    for data in generate_default_achievements():
        criteria = parse_criteria(data["criteria"]).to_json()
        current = existing.get(data["name"])
        if current is None:
            db.add(Achievement(
                name=data["name"],
                description=data["description"],
                type=data["type"],
                icon=data["icon"],
                points_value=data["points_value"],
                criteria=criteria,
                is_active=True,
            ))
            created += 1
        elif force:
            current.description = data["description"]
            current.points_value = data["points_value"]
            current.criteria = criteria

    await db.commit()
    logger.info("Seeded %d achievements (%d already present)", created, len(existing))
    return created
