from __future__ import annotations

import json
import os
import sqlite3
import threading
from contextlib import contextmanager
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import Iterator

from nutriquest.content import (
    ACTIVITY_MULTIPLIERS,
    DEFAULT_GOALS,
    DEFAULT_MAX_HEALTH,
    GOAL_LIMITS,
    GOAL_MODES,
    MEAL_TYPES,
    NUTRIENT_LIMITS,
    SEXES,
    SUMMARY_PERIOD_DAYS,
    TIER_QUEST_COUNTS,
    calculate_daily_calories,
    calculate_protein_goal,
    calculate_tdee,
    glasses_for_oz,
    round_half_up,
)
from nutriquest.errors import CharacterNotFound, UserNotFound

DB_PATH = Path(os.environ.get("NUTRIQUEST_DB", Path(__file__).resolve().parent.parent / "data.sqlite3"))

CHARACTER_FIELDS = (
    "level",
    "xp",
    "xp_to_next",
    "health",
    "max_health",
    "coins",
    "dungeon_tier",
    "enemy_hp",
    "enemy_max_hp",
    "thirst_meter",
    "week_start_date",
)

_locks_guard = threading.Lock()
_user_locks: dict[int, threading.Lock] = {}


def get_conn() -> sqlite3.Connection:
    conn = sqlite3.connect(DB_PATH, timeout=10)
    conn.row_factory = sqlite3.Row
    return conn


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def utc_now_iso() -> str:
    return utc_now().isoformat()


def today_key() -> str:
    return date.today().isoformat()


def _parse_json(raw: str | None, fallback=None):
    if not raw:
        return fallback
    return json.loads(raw)


def _lock_for(user_id: int) -> threading.Lock:
    with _locks_guard:
        lock = _user_locks.get(user_id)
        if lock is None:
            lock = _user_locks[user_id] = threading.Lock()
        return lock


@contextmanager
def user_transaction(user_id: int) -> Iterator[sqlite3.Connection]:
    """Serialize one user's read-compute-write cycle.

    Holds the per-user lock for the whole block and wraps it in a single
    ``BEGIN IMMEDIATE`` transaction, so every write in the block lands together
    or not at all.
    """
    with _lock_for(user_id):
        conn = get_conn()
        try:
            conn.execute("BEGIN IMMEDIATE")
            yield conn
            conn.commit()
        except BaseException:
            conn.rollback()
            raise
        finally:
            conn.close()


def _ensure_column(conn: sqlite3.Connection, table: str, column: str, definition: str) -> None:
    cols = conn.execute(f"PRAGMA table_info({table})").fetchall()
    if column not in {c[1] for c in cols}:
        conn.execute(f"ALTER TABLE {table} ADD COLUMN {column} {definition}")


def insert_event(conn: sqlite3.Connection, user_id: int, event_date: str, kind: str, text: str, meta: dict | None = None) -> None:
    conn.execute(
        "INSERT INTO event_log (user_id, date, kind, text, meta_json) VALUES (?, ?, ?, ?, ?)",
        (user_id, event_date, kind, text, json.dumps(meta or {})),
    )


def init_db() -> None:
    conn = get_conn()
    try:
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS user (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                username TEXT NOT NULL UNIQUE,
                daily_calories INTEGER NOT NULL DEFAULT 2000,
                daily_protein INTEGER NOT NULL DEFAULT 100,
                water_goal_oz INTEGER NOT NULL DEFAULT 64,
                created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS character (
                user_id INTEGER PRIMARY KEY REFERENCES user(id),
                level INTEGER NOT NULL DEFAULT 1,
                xp INTEGER NOT NULL DEFAULT 0,
                xp_to_next INTEGER NOT NULL DEFAULT 100,
                health INTEGER NOT NULL DEFAULT 7,
                max_health INTEGER NOT NULL DEFAULT 7,
                coins INTEGER NOT NULL DEFAULT 0,
                dungeon_tier INTEGER NOT NULL DEFAULT 1,
                enemy_hp INTEGER NOT NULL DEFAULT 5,
                enemy_max_hp INTEGER NOT NULL DEFAULT 5,
                thirst_meter INTEGER NOT NULL DEFAULT 0,
                week_start_date TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS quest (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id INTEGER NOT NULL REFERENCES user(id),
                date TEXT NOT NULL,
                type TEXT NOT NULL,
                description TEXT NOT NULL,
                xp_reward INTEGER NOT NULL,
                completed INTEGER NOT NULL DEFAULT 0
            );
            CREATE INDEX IF NOT EXISTS idx_quest_user_date ON quest (user_id, date);

            CREATE TABLE IF NOT EXISTS food_log (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id INTEGER NOT NULL REFERENCES user(id),
                date TEXT NOT NULL,
                meal_type TEXT NOT NULL,
                food_name TEXT NOT NULL,
                calories REAL NOT NULL DEFAULT 0,
                protein REAL NOT NULL DEFAULT 0,
                carbs REAL NOT NULL DEFAULT 0,
                fat REAL NOT NULL DEFAULT 0,
                fiber REAL NOT NULL DEFAULT 0,
                sodium REAL NOT NULL DEFAULT 0,
                sugar REAL NOT NULL DEFAULT 0,
                is_fruit INTEGER NOT NULL DEFAULT 0,
                is_vegetable INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL
            );
            CREATE INDEX IF NOT EXISTS idx_food_user_date ON food_log (user_id, date);

            CREATE TABLE IF NOT EXISTS water_log (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id INTEGER NOT NULL REFERENCES user(id),
                date TEXT NOT NULL,
                glasses INTEGER NOT NULL,
                created_at TEXT NOT NULL
            );
            CREATE INDEX IF NOT EXISTS idx_water_user_date ON water_log (user_id, date);

            CREATE TABLE IF NOT EXISTS weekly_record (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id INTEGER NOT NULL REFERENCES user(id),
                week_start TEXT NOT NULL,
                week_end TEXT NOT NULL,
                health_at_end INTEGER NOT NULL,
                xp_at_end INTEGER NOT NULL,
                failed INTEGER NOT NULL DEFAULT 0,
                recorded_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS day_close (
                user_id INTEGER NOT NULL REFERENCES user(id),
                date TEXT NOT NULL,
                result_json TEXT NOT NULL,
                closed_at TEXT NOT NULL,
                PRIMARY KEY (user_id, date)
            );

            CREATE TABLE IF NOT EXISTS event_log (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id INTEGER NOT NULL,
                date TEXT NOT NULL,
                kind TEXT NOT NULL,
                text TEXT NOT NULL,
                meta_json TEXT
            );
            """
        )
        # body profile, filled in by save_profile
        _ensure_column(conn, "user", "mode", "TEXT")
        _ensure_column(conn, "user", "sex", "TEXT")
        _ensure_column(conn, "user", "height_inches", "INTEGER")
        _ensure_column(conn, "user", "current_weight", "REAL")
        _ensure_column(conn, "user", "goal_weight", "REAL")
        _ensure_column(conn, "user", "age", "INTEGER")
        _ensure_column(conn, "user", "activity_level", "TEXT")
        _ensure_column(conn, "user", "setup_complete", "INTEGER NOT NULL DEFAULT 0")
        conn.commit()
    finally:
        conn.close()


# -- users and goals ---------------------------------------------------------

PROFILE_FIELDS = (
    "id",
    "username",
    "setup_complete",
    "mode",
    "sex",
    "height_inches",
    "current_weight",
    "goal_weight",
    "age",
    "activity_level",
    "daily_calories",
    "daily_protein",
    "water_goal_oz",
)


def _check_goals(daily_calories: int, daily_protein: int, water_goal_oz: int) -> None:
    values = {"daily_calories": daily_calories, "daily_protein": daily_protein, "water_goal_oz": water_goal_oz}
    for key, value in values.items():
        if not 1 <= value <= GOAL_LIMITS[key]:
            raise ValueError(f"{key} must be between 1 and {GOAL_LIMITS[key]}")


def _require_user(conn: sqlite3.Connection, user_id: int) -> None:
    if conn.execute("SELECT 1 FROM user WHERE id = ?", (user_id,)).fetchone() is None:
        raise UserNotFound(user_id)


def create_user(
    username: str,
    daily_calories: int = DEFAULT_GOALS["daily_calories"],
    daily_protein: int = DEFAULT_GOALS["daily_protein"],
    water_goal_oz: int = DEFAULT_GOALS["water_goal_oz"],
    now: datetime | None = None,
) -> dict:
    """Register a user together with a fresh level-1 character."""
    name = username.strip()
    if not name:
        raise ValueError("username must not be blank")
    _check_goals(daily_calories, daily_protein, water_goal_oz)
    created = (now or utc_now()).isoformat()
    conn = get_conn()
    try:
        try:
            cur = conn.execute(
                "INSERT INTO user (username, daily_calories, daily_protein, water_goal_oz, created_at) VALUES (?, ?, ?, ?, ?)",
                (name, int(daily_calories), int(daily_protein), int(water_goal_oz), created),
            )
        except sqlite3.IntegrityError as exc:
            raise ValueError(f"username {name!r} is taken") from exc
        user_id = cur.lastrowid
        conn.execute(
            """
            INSERT INTO character (
                user_id, level, xp, xp_to_next, health, max_health, coins,
                dungeon_tier, enemy_hp, enemy_max_hp, thirst_meter, week_start_date
            ) VALUES (?, 1, 0, 100, ?, ?, 0, 1, ?, ?, 0, ?)
            """,
            (user_id, DEFAULT_MAX_HEALTH, DEFAULT_MAX_HEALTH, TIER_QUEST_COUNTS[1], TIER_QUEST_COUNTS[1], created),
        )
        conn.commit()
        return {"id": user_id, "username": name, "daily_calories": int(daily_calories), "daily_protein": int(daily_protein), "water_goal_oz": int(water_goal_oz)}
    finally:
        conn.close()


def update_user_goals(user_id: int, daily_calories: int, daily_protein: int, water_goal_oz: int) -> dict:
    _check_goals(daily_calories, daily_protein, water_goal_oz)
    conn = get_conn()
    try:
        cur = conn.execute(
            "UPDATE user SET daily_calories = ?, daily_protein = ?, water_goal_oz = ? WHERE id = ?",
            (daily_calories, daily_protein, water_goal_oz, user_id),
        )
        if cur.rowcount == 0:
            raise UserNotFound(user_id)
        conn.commit()
        return get_user_goals(conn, user_id)
    finally:
        conn.close()


def get_user_goals(conn: sqlite3.Connection, user_id: int) -> dict:
    row = conn.execute("SELECT daily_calories, daily_protein, water_goal_oz FROM user WHERE id = ?", (user_id,)).fetchone()
    if row is None:
        raise UserNotFound(user_id)
    # zero means "never set"
    return {key: row[key] or fallback for key, fallback in DEFAULT_GOALS.items()}


def list_user_ids(conn: sqlite3.Connection) -> list[int]:
    return [row["id"] for row in conn.execute("SELECT id FROM user ORDER BY id").fetchall()]


def _profile_row(conn: sqlite3.Connection, user_id: int) -> dict:
    row = conn.execute(f"SELECT {', '.join(PROFILE_FIELDS)} FROM user WHERE id = ?", (user_id,)).fetchone()
    if row is None:
        raise UserNotFound(user_id)
    return {**dict(row), "setup_complete": bool(row["setup_complete"])}


def get_profile(user_id: int) -> dict:
    conn = get_conn()
    try:
        return _profile_row(conn, user_id)
    finally:
        conn.close()


def save_profile(
    user_id: int,
    mode: str,
    sex: str,
    height_inches: int,
    current_weight: float,
    goal_weight: float,
    age: int,
    activity_level: str,
    water_goal_oz: int | None = None,
) -> dict:
    """Store the body profile and replace the calorie and protein goals derived from it.

    The water goal is only changed when one is given.
    """
    if mode not in GOAL_MODES:
        raise ValueError(f"mode must be one of {', '.join(GOAL_MODES)}")
    if sex not in SEXES:
        raise ValueError(f"sex must be one of {', '.join(SEXES)}")
    if activity_level not in ACTIVITY_MULTIPLIERS:
        raise ValueError(f"activity_level must be one of {', '.join(ACTIVITY_MULTIPLIERS)}")
    if water_goal_oz is not None and not 1 <= water_goal_oz <= GOAL_LIMITS["water_goal_oz"]:
        raise ValueError(f"water_goal_oz must be between 1 and {GOAL_LIMITS['water_goal_oz']}")
    tdee = calculate_tdee(sex, current_weight, height_inches, age, activity_level)
    daily_calories = calculate_daily_calories(tdee, mode, sex)
    daily_protein = calculate_protein_goal(goal_weight)

    conn = get_conn()
    try:
        current_water = get_user_goals(conn, user_id)["water_goal_oz"]
        conn.execute(
            """
            UPDATE user SET
                mode = ?, sex = ?, height_inches = ?, current_weight = ?, goal_weight = ?, age = ?,
                activity_level = ?, daily_calories = ?, daily_protein = ?, water_goal_oz = ?, setup_complete = 1
            WHERE id = ?
            """,
            (
                mode,
                sex,
                height_inches,
                current_weight,
                goal_weight,
                age,
                activity_level,
                daily_calories,
                daily_protein,
                current_water if water_goal_oz is None else water_goal_oz,
                user_id,
            ),
        )
        conn.commit()
        profile = _profile_row(conn, user_id)
    finally:
        conn.close()
    return {"user": profile, "tdee": tdee, "daily_calories": daily_calories, "daily_protein": daily_protein}


# -- character ---------------------------------------------------------------


def get_character(conn: sqlite3.Connection, user_id: int) -> dict | None:
    row = conn.execute("SELECT * FROM character WHERE user_id = ?", (user_id,)).fetchone()
    return dict(row) if row else None


def update_character(conn: sqlite3.Connection, user_id: int, fields: dict) -> dict:
    unknown = set(fields) - set(CHARACTER_FIELDS)
    if unknown:
        raise ValueError(f"not character fields: {sorted(unknown)}")
    if fields:
        assignments = ", ".join(f"{name} = :{name}" for name in fields)
        cur = conn.execute(f"UPDATE character SET {assignments} WHERE user_id = :user_id", {**fields, "user_id": user_id})
        if cur.rowcount == 0:
            raise CharacterNotFound(user_id)
    character = get_character(conn, user_id)
    if character is None:
        raise CharacterNotFound(user_id)
    return character


def load_character(user_id: int) -> dict:
    conn = get_conn()
    try:
        character = get_character(conn, user_id)
        if character is None:
            raise CharacterNotFound(user_id)
        return character
    finally:
        conn.close()


# -- quests ------------------------------------------------------------------


def _quest_row(row: sqlite3.Row) -> dict:
    quest = dict(row)
    quest["completed"] = bool(quest["completed"])
    return quest


def find_quests(conn: sqlite3.Connection, user_id: int, for_date: str) -> list[dict]:
    rows = conn.execute("SELECT * FROM quest WHERE user_id = ? AND date = ? ORDER BY id", (user_id, for_date)).fetchall()
    return [_quest_row(r) for r in rows]


def create_quests(conn: sqlite3.Connection, user_id: int, for_date: str, specs: list[dict]) -> list[dict]:
    conn.executemany(
        "INSERT INTO quest (user_id, date, type, description, xp_reward, completed) VALUES (?, ?, ?, ?, ?, 0)",
        [(user_id, for_date, s["type"], s["description"], int(s["xp_reward"])) for s in specs],
    )
    return find_quests(conn, user_id, for_date)


def update_quest_completion(conn: sqlite3.Connection, quest_id: int, completed: bool) -> dict:
    conn.execute("UPDATE quest SET completed = ? WHERE id = ?", (int(completed), quest_id))
    row = conn.execute("SELECT * FROM quest WHERE id = ?", (quest_id,)).fetchone()
    if row is None:
        raise LookupError(f"Missing quest {quest_id}")
    return _quest_row(row)


# -- fact providers ----------------------------------------------------------


def sum_daily_nutrition_facts(conn: sqlite3.Connection, user_id: int, for_date: str) -> dict:
    rows = conn.execute(
        "SELECT meal_type, calories, protein, fiber, sodium, is_fruit, is_vegetable FROM food_log WHERE user_id = ? AND date = ?",
        (user_id, for_date),
    ).fetchall()
    return {
        "calories": sum(r["calories"] for r in rows),
        "protein": sum(r["protein"] for r in rows),
        "fiber": sum(r["fiber"] for r in rows),
        "sodium": sum(r["sodium"] for r in rows),
        "has_fruit_or_veg": any(r["is_fruit"] or r["is_vegetable"] for r in rows),
        "meal_types_logged": {r["meal_type"] for r in rows},
    }


def sum_daily_hydration(conn: sqlite3.Connection, user_id: int, for_date: str) -> int:
    row = conn.execute("SELECT COALESCE(SUM(glasses), 0) AS total FROM water_log WHERE user_id = ? AND date = ?", (user_id, for_date)).fetchone()
    return int(row["total"])


# -- food and water logs -----------------------------------------------------


def log_food(
    user_id: int,
    for_date: str,
    meal_type: str,
    food_name: str,
    calories: float,
    protein: float = 0,
    carbs: float = 0,
    fat: float = 0,
    fiber: float = 0,
    sodium: float = 0,
    sugar: float = 0,
    is_fruit: bool = False,
    is_vegetable: bool = False,
) -> dict:
    if meal_type not in MEAL_TYPES:
        raise ValueError(f"unknown meal type {meal_type!r}")
    given = {"calories": calories, "protein": protein, "carbs": carbs, "fat": fat, "fiber": fiber, "sodium": sodium, "sugar": sugar}
    for key, value in given.items():
        if not 0 <= value <= NUTRIENT_LIMITS[key]:
            raise ValueError(f"{key} must be between 0 and {NUTRIENT_LIMITS[key]}")
    nutrients = [float(v) for v in given.values()]
    conn = get_conn()
    try:
        _require_user(conn, user_id)
        cur = conn.execute(
            """
            INSERT INTO food_log (
                user_id, date, meal_type, food_name, calories, protein, carbs, fat, fiber, sodium, sugar,
                is_fruit, is_vegetable, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (user_id, for_date, meal_type, food_name.strip(), *nutrients, int(is_fruit), int(is_vegetable), utc_now_iso()),
        )
        conn.commit()
        row = conn.execute("SELECT * FROM food_log WHERE id = ?", (cur.lastrowid,)).fetchone()
        assert row is not None
        return dict(row)
    finally:
        conn.close()


def delete_food_log(user_id: int, log_id: int) -> bool:
    conn = get_conn()
    try:
        cur = conn.execute("DELETE FROM food_log WHERE id = ? AND user_id = ?", (log_id, user_id))
        conn.commit()
        return cur.rowcount > 0
    finally:
        conn.close()


def get_food_logs(user_id: int, for_date: str) -> dict:
    conn = get_conn()
    try:
        _require_user(conn, user_id)
        logs = [dict(r) for r in conn.execute("SELECT * FROM food_log WHERE user_id = ? AND date = ? ORDER BY id", (user_id, for_date)).fetchall()]
        summary = {k: round(sum(log[k] for log in logs), 1) for k in ("calories", "protein", "carbs", "fat", "fiber", "sodium")}
        return {"date": for_date, "logs": logs, "summary": summary}
    finally:
        conn.close()


SUMMARY_NUTRIENTS = ("calories", "protein", "carbs", "fat", "fiber", "sodium")


def get_nutrition_summary(user_id: int, period: str, end_date: str) -> dict:
    """Per-day nutrient totals over the ``period`` ending on ``end_date``.

    Averages divide by the number of days that have at least one log, so
    unlogged days do not drag them down.
    """
    if period not in SUMMARY_PERIOD_DAYS:
        raise ValueError(f"period must be one of {', '.join(SUMMARY_PERIOD_DAYS)}")
    start_date = (date.fromisoformat(end_date) - timedelta(days=SUMMARY_PERIOD_DAYS[period] - 1)).isoformat()
    conn = get_conn()
    try:
        goals = get_user_goals(conn, user_id)
        rows = conn.execute(
            f"""
            SELECT date, {', '.join(f'SUM({k}) AS {k}' for k in SUMMARY_NUTRIENTS)}
            FROM food_log
            WHERE user_id = ? AND date BETWEEN ? AND ?
            GROUP BY date
            ORDER BY date
            """,
            (user_id, start_date, end_date),
        ).fetchall()
    finally:
        conn.close()

    daily = [{"date": r["date"], **{k: round(r[k], 1) for k in SUMMARY_NUTRIENTS}} for r in rows]
    totals = {k: sum(r[k] for r in rows) for k in SUMMARY_NUTRIENTS}
    days = len(rows) or 1
    return {
        "period": period,
        "start_date": start_date,
        "end_date": end_date,
        "daily": daily,
        "totals": {k: round(v, 1) for k, v in totals.items()},
        "averages": {k: round_half_up(v / days) for k, v in totals.items()},
        "goals": goals,
    }


def insert_water_log(conn: sqlite3.Connection, user_id: int, for_date: str, glasses: int) -> dict:
    cur = conn.execute(
        "INSERT INTO water_log (user_id, date, glasses, created_at) VALUES (?, ?, ?, ?)",
        (user_id, for_date, glasses, utc_now_iso()),
    )
    row = conn.execute("SELECT * FROM water_log WHERE id = ?", (cur.lastrowid,)).fetchone()
    assert row is not None
    return dict(row)


def remove_water_log(conn: sqlite3.Connection, user_id: int, log_id: int) -> dict | None:
    row = conn.execute("SELECT * FROM water_log WHERE id = ? AND user_id = ?", (log_id, user_id)).fetchone()
    if row is None:
        return None
    conn.execute("DELETE FROM water_log WHERE id = ?", (log_id,))
    return dict(row)


# -- weekly records, day closes, events --------------------------------------


def insert_weekly_record(conn: sqlite3.Connection, user_id: int, week_start: datetime, health_at_end: int, xp_at_end: int, failed: bool) -> None:
    conn.execute(
        "INSERT INTO weekly_record (user_id, week_start, week_end, health_at_end, xp_at_end, failed, recorded_at) VALUES (?, ?, ?, ?, ?, ?, ?)",
        (
            user_id,
            week_start.date().isoformat(),
            (week_start + timedelta(days=6)).date().isoformat(),
            health_at_end,
            xp_at_end,
            int(failed),
            utc_now_iso(),
        ),
    )


def get_weekly_history(user_id: int, limit: int = 12) -> list[dict]:
    conn = get_conn()
    try:
        rows = conn.execute("SELECT * FROM weekly_record WHERE user_id = ? ORDER BY week_start DESC, id DESC LIMIT ?", (user_id, limit)).fetchall()
        return [{**dict(r), "failed": bool(r["failed"])} for r in rows]
    finally:
        conn.close()


def get_day_close(conn: sqlite3.Connection, user_id: int, for_date: str) -> dict | None:
    row = conn.execute("SELECT result_json FROM day_close WHERE user_id = ? AND date = ?", (user_id, for_date)).fetchone()
    return _parse_json(row["result_json"], {}) if row else None


def insert_day_close(conn: sqlite3.Connection, user_id: int, for_date: str, result: dict) -> None:
    conn.execute(
        "INSERT INTO day_close (user_id, date, result_json, closed_at) VALUES (?, ?, ?, ?)",
        (user_id, for_date, json.dumps(result), utc_now_iso()),
    )


def get_recent_events(user_id: int, limit: int = 20) -> list[dict]:
    conn = get_conn()
    try:
        rows = conn.execute("SELECT * FROM event_log WHERE user_id = ? ORDER BY id DESC LIMIT ?", (user_id, limit)).fetchall()
        return [{**dict(r), "meta": _parse_json(r["meta_json"], {})} for r in rows]
    finally:
        conn.close()


def get_water_summary(user_id: int, for_date: str) -> dict:
    conn = get_conn()
    try:
        goals = get_user_goals(conn, user_id)
        logs = [dict(r) for r in conn.execute("SELECT * FROM water_log WHERE user_id = ? AND date = ? ORDER BY id", (user_id, for_date)).fetchall()]
    finally:
        conn.close()
    total = sum(log["glasses"] for log in logs)
    return {
        "date": for_date,
        "logs": logs,
        "total_glasses": total,
        "goal_glasses": glasses_for_oz(goals["water_goal_oz"]),
        "total_oz": total * 8,
        "goal_oz": goals["water_goal_oz"],
    }
