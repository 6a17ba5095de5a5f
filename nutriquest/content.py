from __future__ import annotations

import math
import random
from typing import Sequence, TypeVar

T = TypeVar("T")

QUEST_XP_REWARD = 25
FIBER_TARGET_G = 25
SODIUM_LIMIT_MG = 2300
CALORIE_TOLERANCE = 1.1
MAX_THIRST = 7
DEFAULT_MAX_HEALTH = 7
WATER_XP_PER_GLASS = 20

DEFAULT_GOALS = {"daily_calories": 2000, "daily_protein": 100, "water_goal_oz": 64}

MEAL_TYPES = ("breakfast", "lunch", "dinner", "snack")

GOAL_MODES = ("lose", "gain", "maintain")
SEXES = ("male", "female")
ACTIVITY_MULTIPLIERS = {
    "sedentary": 1.2,
    "light": 1.375,
    "moderate": 1.55,
    "active": 1.725,
    "very_active": 1.9,
}
CALORIE_OFFSETS = {"lose": -500, "gain": 300, "maintain": 0}
CALORIE_FLOORS = {"male": 1500, "female": 1200}
PROTEIN_G_PER_LB = 0.8
SUMMARY_PERIOD_DAYS = {"day": 1, "week": 7, "month": 30}

# inclusive upper bounds; every value must also be non-negative
NUTRIENT_LIMITS = {
    "calories": 10000,
    "protein": 1000,
    "carbs": 1000,
    "fat": 1000,
    "fiber": 200,
    "sodium": 50000,
    "sugar": 1000,
}
GOAL_LIMITS = {"daily_calories": 10000, "daily_protein": 1000, "water_goal_oz": 256}

QUEST_CATALOG = [
    {"type": "log_breakfast", "description": "Log your breakfast"},
    {"type": "log_lunch", "description": "Log your lunch"},
    {"type": "log_dinner", "description": "Log your dinner"},
    {"type": "calorie_target", "description": "Stay within calorie target"},
    {"type": "protein_target", "description": "Hit your protein goal"},
    {"type": "fruit_veg", "description": "Eat a fruit or vegetable"},
    {"type": "fiber", "description": f"Get {FIBER_TARGET_G}g+ fiber today"},
    {"type": "sodium", "description": f"Keep sodium under {SODIUM_LIMIT_MG}mg"},
    {"type": "water_goal", "description": "Drink your water goal"},
]

CORE_QUEST_TYPES = ("log_breakfast", "log_lunch", "log_dinner")

TIER_QUEST_COUNTS = {1: 5, 2: 6, 3: 7}
FALLBACK_QUEST_COUNT = TIER_QUEST_COUNTS[1]


def weighted_pick(rng: random.Random, items: Sequence[T], weights: Sequence[float]) -> T:
    """Pick one of ``items`` with probability proportional to the parallel ``weights``.

    Non-positive weights never win unless every weight is non-positive, in which
    case the first item is returned.
    """
    if not items:
        raise ValueError("weighted_pick needs at least one item")
    if len(items) != len(weights):
        raise ValueError("items and weights must be the same length")
    total = sum(max(0.0, float(w)) for w in weights)
    if total <= 0:
        return items[0]
    pick = rng.random() * total
    running = 0.0
    for item, weight in zip(items, weights):
        weight = max(0.0, float(weight))
        if weight <= 0:
            continue
        running += weight
        if pick < running:
            return item
    # float drift on the last bucket
    return [item for item, weight in zip(items, weights) if weight > 0][-1]


def sample_uniform(rng: random.Random, pool: Sequence[T], count: int) -> list[T]:
    remaining = list(pool)
    chosen: list[T] = []
    while remaining and len(chosen) < count:
        item = weighted_pick(rng, remaining, [1] * len(remaining))
        remaining.remove(item)
        chosen.append(item)
    return chosen


def quest_count_for_tier(tier: int) -> int | None:
    return TIER_QUEST_COUNTS.get(tier)


def tier_for_level(level: int) -> int:
    if level >= 15:
        return 3
    if level >= 7:
        return 2
    return 1


def build_quest_specs(rng: random.Random, count: int) -> list[dict]:
    core = [q for q in QUEST_CATALOG if q["type"] in CORE_QUEST_TYPES]
    extras = [q for q in QUEST_CATALOG if q["type"] not in CORE_QUEST_TYPES]
    selected = core + sample_uniform(rng, extras, max(0, count - len(core)))
    return [{"type": q["type"], "description": q["description"], "xp_reward": QUEST_XP_REWARD} for q in selected]


def glasses_for_oz(water_goal_oz: int) -> int:
    return math.ceil(water_goal_oz / 8)


def round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def calculate_tdee(sex: str, weight_lbs: float, height_inches: float, age: int, activity_level: str) -> int:
    """Mifflin-St Jeor resting energy scaled by an activity multiplier.

    Unknown activity levels count as sedentary.
    """
    weight_kg = weight_lbs * 0.453592
    height_cm = height_inches * 2.54
    bmr = 10 * weight_kg + 6.25 * height_cm - 5 * age + (5 if sex == "male" else -161)
    return round_half_up(bmr * ACTIVITY_MULTIPLIERS.get(activity_level, ACTIVITY_MULTIPLIERS["sedentary"]))


def calculate_daily_calories(tdee: int, mode: str, sex: str) -> int:
    floor = CALORIE_FLOORS["female"] if sex == "female" else CALORIE_FLOORS["male"]
    return max(floor, tdee + CALORIE_OFFSETS.get(mode, 0))


def calculate_protein_goal(goal_weight_lbs: float) -> int:
    return round_half_up(goal_weight_lbs * PROTEIN_G_PER_LB)
