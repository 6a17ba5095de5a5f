"""Progression engine: daily quests, combat, thirst and the weekly cycle.

Operations that take ``conn`` expect to run inside ``db.user_transaction`` for the
same user. ``refresh_state``, ``evaluate``, ``process_end_of_day`` and the water
helpers open that scope themselves.
"""

from __future__ import annotations

import logging
import math
import random
import sqlite3
from datetime import datetime, timedelta, timezone

from nutriquest import db
from nutriquest.content import (
    CALORIE_TOLERANCE,
    FALLBACK_QUEST_COUNT,
    FIBER_TARGET_G,
    MAX_THIRST,
    QUEST_XP_REWARD,
    SODIUM_LIMIT_MG,
    WATER_XP_PER_GLASS,
    build_quest_specs,
    glasses_for_oz,
    quest_count_for_tier,
    tier_for_level,
)
from nutriquest.errors import CharacterNotFound

logger = logging.getLogger(__name__)

ENEMY_BONUS_XP_PER_TIER = 50
ENEMY_COINS_PER_TIER = 20


# -- pure rules --------------------------------------------------------------


def _meal_logged(meal: str):
    return lambda facts: meal in facts["meal_types_logged"]


_COMPLETION_RULES = {
    "log_breakfast": _meal_logged("breakfast"),
    "log_lunch": _meal_logged("lunch"),
    "log_dinner": _meal_logged("dinner"),
    # eating nothing does not satisfy the calorie or sodium quests
    "calorie_target": lambda f: f["calories"] > 0 and f["calories"] <= f["daily_calories"] * CALORIE_TOLERANCE,
    "protein_target": lambda f: f["protein"] >= f["daily_protein"],
    "fruit_veg": lambda f: bool(f["has_fruit_or_veg"]),
    "fiber": lambda f: f["fiber"] >= FIBER_TARGET_G,
    "sodium": lambda f: f["calories"] > 0 and f["sodium"] <= SODIUM_LIMIT_MG,
    "water_goal": lambda f: f["total_glasses"] >= f["goal_glasses"],
}


def compute_completion(quest_type: str, facts: dict) -> bool:
    rule = _COMPLETION_RULES.get(quest_type)
    if rule is None:
        logger.warning("Unknown quest type %r; treating as not completed", quest_type)
        return False
    return bool(rule(facts))


def apply_xp(level: int, xp: int, xp_to_next: int, gained: int) -> tuple[int, int, int, bool]:
    """Add ``gained`` XP and run the level-up loop.

    Returns ``(level, xp, xp_to_next, leveled_up)``. Each level costs the
    current ``xp_to_next``, which becomes ``level * 100`` after every step.
    """
    xp += gained
    leveled_up = False
    while xp >= xp_to_next:
        xp -= xp_to_next
        level += 1
        xp_to_next = level * 100
        leveled_up = True
    return level, xp, xp_to_next, leveled_up


def thirst_for(total_glasses: int, goal_glasses: int) -> int:
    if goal_glasses <= 0:
        return 0
    drunk = min(max(0, total_glasses), goal_glasses)
    # round half up of MAX_THIRST * (goal - drunk) / goal, in integers
    return (2 * MAX_THIRST * (goal_glasses - drunk) + goal_glasses) // (2 * goal_glasses)


def resolve_quest_count(tier: int) -> int:
    count = quest_count_for_tier(tier)
    if count is None:
        logger.warning("No quest count configured for tier %r; using %d", tier, FALLBACK_QUEST_COUNT)
        return FALLBACK_QUEST_COUNT
    return count


def _as_utc(value: datetime | str) -> datetime:
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# -- facts -------------------------------------------------------------------


def build_daily_facts(conn: sqlite3.Connection, user_id: int, for_date: str) -> dict:
    goals = db.get_user_goals(conn, user_id)
    facts = db.sum_daily_nutrition_facts(conn, user_id, for_date)
    facts["total_glasses"] = db.sum_daily_hydration(conn, user_id, for_date)
    facts["goal_glasses"] = glasses_for_oz(goals["water_goal_oz"])
    facts["daily_calories"] = goals["daily_calories"]
    facts["daily_protein"] = goals["daily_protein"]
    return facts


def _require_character(conn: sqlite3.Connection, user_id: int) -> dict:
    character = db.get_character(conn, user_id)
    if character is None:
        raise CharacterNotFound(user_id)
    return character


# -- components ---------------------------------------------------------------


def ensure_today_quests(conn: sqlite3.Connection, user_id: int, today: str, rng: random.Random | None = None) -> list[dict]:
    existing = db.find_quests(conn, user_id, today)
    if existing:
        return existing
    character = db.get_character(conn, user_id)
    if character is None:
        return []
    count = resolve_quest_count(character["dungeon_tier"])
    specs = build_quest_specs(rng or random.Random(), count)
    quests = db.create_quests(conn, user_id, today, specs)
    db.insert_event(conn, user_id, today, "quests", f"{len(quests)} quests posted for tier {character['dungeon_tier']}.")
    logger.info("Generated %d quests for user %s on %s", len(quests), user_id, today)
    return quests


def evaluate_quests(conn: sqlite3.Connection, user_id: int, for_date: str) -> dict:
    quests = db.find_quests(conn, user_id, for_date)
    if not quests:
        return {"completed": 0, "total": 0, "newly_completed": 0}

    facts = build_daily_facts(conn, user_id, for_date)
    newly_completed = 0
    for quest in quests:
        # completion only ever moves false -> true within a day
        if quest["completed"]:
            continue
        if compute_completion(quest["type"], facts):
            db.update_quest_completion(conn, quest["id"], True)
            quest["completed"] = True
            newly_completed += 1

    completed = sum(1 for q in quests if q["completed"])
    return {"completed": completed, "total": len(quests), "newly_completed": newly_completed}


def resolve_combat(conn: sqlite3.Connection, user_id: int, for_date: str, newly_completed: int) -> dict:
    character = _require_character(conn, user_id)
    quests = db.find_quests(conn, user_id, for_date)
    completed = sum(1 for q in quests if q["completed"])
    total = len(quests)

    damage = max(0, newly_completed)
    enemy_hp = max(0, character["enemy_hp"] - damage)
    enemy_defeated = total > 0 and enemy_hp == 0 and completed == total

    tier = character["dungeon_tier"]
    xp_gained = damage * QUEST_XP_REWARD
    coins_gained = 0
    if enemy_defeated:
        xp_gained += ENEMY_BONUS_XP_PER_TIER * tier
        coins_gained = ENEMY_COINS_PER_TIER * tier

    level, xp, xp_to_next, leveled_up = apply_xp(character["level"], character["xp"], character["xp_to_next"], xp_gained)

    fields = {
        "level": level,
        "xp": xp,
        "xp_to_next": xp_to_next,
        "coins": character["coins"] + coins_gained,
        "enemy_hp": enemy_hp,
    }
    if enemy_defeated:
        new_tier = tier_for_level(level)
        fields["dungeon_tier"] = new_tier
        fields["enemy_max_hp"] = fields["enemy_hp"] = resolve_quest_count(new_tier)
    db.update_character(conn, user_id, fields)

    if enemy_defeated:
        db.insert_event(conn, user_id, for_date, "enemy_defeated", f"Tier {tier} enemy defeated (+{coins_gained} coins).", {"tier": tier, "coins": coins_gained})
        logger.info("User %s defeated the tier %d enemy", user_id, tier)
    if leveled_up:
        db.insert_event(conn, user_id, for_date, "level_up", f"Level up to {level}.", {"level": level})
        logger.info("User %s reached level %d", user_id, level)

    return {
        "enemy_defeated": enemy_defeated,
        "xp_gained": xp_gained,
        "coins_gained": coins_gained,
        "leveled_up": leveled_up,
        "new_level": level if leveled_up else None,
        "damage": damage,
        "enemy_hp": fields["enemy_hp"],
    }


def update_thirst(conn: sqlite3.Connection, user_id: int, today: str) -> int:
    _require_character(conn, user_id)
    goals = db.get_user_goals(conn, user_id)
    thirst = thirst_for(db.sum_daily_hydration(conn, user_id, today), glasses_for_oz(goals["water_goal_oz"]))
    db.update_character(conn, user_id, {"thirst_meter": thirst})
    return thirst


def rollover_if_due(conn: sqlite3.Connection, user_id: int, now: datetime) -> dict | None:
    character = db.get_character(conn, user_id)
    if character is None:
        return None
    now = _as_utc(now)
    week_start = _as_utc(character["week_start_date"])
    if (now - week_start) // timedelta(days=1) < 7:
        return None

    failed = character["health"] <= 0
    fields = {"health": character["max_health"], "thirst_meter": 0, "week_start_date": now.isoformat()}
    if failed:
        fields["xp"] = 0
    db.update_character(conn, user_id, fields)
    db.insert_weekly_record(conn, user_id, week_start, character["health"], character["xp"], failed)

    text = "Week failed: XP forfeited." if failed else "New week: health restored."
    db.insert_event(conn, user_id, now.date().isoformat(), "weekly_reset", text, {"failed": failed, "xp_forfeited": character["xp"] if failed else 0})
    logger.info("Weekly rollover for user %s (failed=%s)", user_id, failed)
    return {"failed": failed, "xp_forfeited": character["xp"] if failed else 0}


def award_xp(conn: sqlite3.Connection, user_id: int, amount: int, for_date: str, source: str) -> dict:
    character = _require_character(conn, user_id)
    level, xp, xp_to_next, leveled_up = apply_xp(character["level"], character["xp"], character["xp_to_next"], max(0, amount))
    db.update_character(conn, user_id, {"level": level, "xp": xp, "xp_to_next": xp_to_next})
    if leveled_up:
        db.insert_event(conn, user_id, for_date, "level_up", f"Level up to {level} via {source}.", {"level": level})
    return {"xp_gained": max(0, amount), "leveled_up": leveled_up, "new_level": level if leveled_up else None}


# -- caller-facing operations -------------------------------------------------


def refresh_state(user_id: int, today: str | None = None, now: datetime | None = None, rng: random.Random | None = None) -> dict:
    today = today or db.today_key()
    with db.user_transaction(user_id) as conn:
        rollover_if_due(conn, user_id, now or db.utc_now())
        ensure_today_quests(conn, user_id, today, rng)
        character = _require_character(conn, user_id)
        quests = db.find_quests(conn, user_id, today)
    return {"character": character, "quests": quests}


def evaluate(user_id: int, today: str | None = None) -> dict:
    today = today or db.today_key()
    with db.user_transaction(user_id) as conn:
        _require_character(conn, user_id)
        evaluation = evaluate_quests(conn, user_id, today)
        combat = resolve_combat(conn, user_id, today, evaluation["newly_completed"])
        thirst = update_thirst(conn, user_id, today)
        character = _require_character(conn, user_id)
        quests = db.find_quests(conn, user_id, today)
    return {
        "character": character,
        "quests": quests,
        "evaluation": {"completed": evaluation["completed"], "total": evaluation["total"]},
        "combat": combat,
        "thirst_meter": thirst,
    }


def process_end_of_day(user_id: int, for_date: str) -> dict:
    """Close out ``for_date``: settle its quests, then take 1 health if under half were done.

    Runs at most once per user and date; later calls return the stored result.
    """
    with db.user_transaction(user_id) as conn:
        closed = db.get_day_close(conn, user_id, for_date)
        if closed is not None:
            return {**closed, "already_closed": True}

        _require_character(conn, user_id)
        evaluation = evaluate_quests(conn, user_id, for_date)
        combat = resolve_combat(conn, user_id, for_date, evaluation["newly_completed"])
        character = _require_character(conn, user_id)

        health_lost = evaluation["completed"] < math.ceil(evaluation["total"] / 2)
        health = character["health"]
        if health_lost and health > 0:
            health -= 1
            db.update_character(conn, user_id, {"health": health})
            db.insert_event(
                conn, user_id, for_date, "health_loss", f"Only {evaluation['completed']}/{evaluation['total']} quests done: -1 health.", {"health": health}
            )
            logger.info("User %s lost 1 health closing %s", user_id, for_date)

        result = {
            "date": for_date,
            "completed": evaluation["completed"],
            "total": evaluation["total"],
            "health_lost": health_lost,
            "health": health,
            "enemy_defeated": combat["enemy_defeated"],
        }
        db.insert_day_close(conn, user_id, for_date, result)
    return {**result, "already_closed": False}


def log_water(user_id: int, glasses: int, for_date: str | None = None, today: str | None = None) -> dict:
    if glasses <= 0:
        raise ValueError("glasses must be positive")
    today = today or db.today_key()
    for_date = for_date or today
    with db.user_transaction(user_id) as conn:
        _require_character(conn, user_id)
        water_log = db.insert_water_log(conn, user_id, for_date, glasses)
        reward = award_xp(conn, user_id, glasses * WATER_XP_PER_GLASS, for_date, "hydration")
        thirst = update_thirst(conn, user_id, today)
        db.insert_event(conn, user_id, for_date, "hydration", f"Drank {glasses} glass(es).", {"glasses": glasses})
    return {"water_log": water_log, **reward, "thirst_meter": thirst}


def delete_water_log(user_id: int, log_id: int, today: str | None = None) -> dict:
    today = today or db.today_key()
    with db.user_transaction(user_id) as conn:
        removed = db.remove_water_log(conn, user_id, log_id)
        thirst = update_thirst(conn, user_id, today)
    return {"deleted": removed is not None, "thirst_meter": thirst}
