from __future__ import annotations

import random
import tempfile
import threading
import unittest
from datetime import datetime, timedelta, timezone
from pathlib import Path

import nutriquest.db as db
from nutriquest import engine
from nutriquest.errors import CharacterNotFound, UserNotFound

DAY = "2026-03-02"
NOON = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


class DBIsolatedTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self._old_db = db.DB_PATH
        db.DB_PATH = Path(self._tmp.name) / "test.sqlite3"
        db.init_db()
        self.user_id = db.create_user("hero", now=NOON)["id"]

    def tearDown(self) -> None:
        db.DB_PATH = self._old_db
        self._tmp.cleanup()

    def set_character(self, **fields) -> dict:
        with db.user_transaction(self.user_id) as conn:
            return db.update_character(conn, self.user_id, fields)

    def add_quests(self, *types: str, day: str = DAY) -> list[dict]:
        specs = [{"type": t, "description": t, "xp_reward": 25} for t in types]
        with db.user_transaction(self.user_id) as conn:
            return db.create_quests(conn, self.user_id, day, specs)

    def eat(self, meal_type: str, day: str = DAY, **nutrients) -> dict:
        nutrients.setdefault("calories", 500)
        return db.log_food(self.user_id, day, meal_type, f"{meal_type} plate", **nutrients)

    def character(self) -> dict:
        return db.load_character(self.user_id)


class RegistrationTests(DBIsolatedTestCase):
    def test_new_character_defaults(self) -> None:
        c = self.character()
        self.assertEqual((c["level"], c["xp"], c["xp_to_next"]), (1, 0, 100))
        self.assertEqual((c["health"], c["max_health"]), (7, 7))
        self.assertEqual((c["dungeon_tier"], c["enemy_hp"], c["enemy_max_hp"]), (1, 5, 5))
        self.assertEqual((c["coins"], c["thirst_meter"]), (0, 0))

    def test_duplicate_username_rejected(self) -> None:
        with self.assertRaises(ValueError):
            db.create_user("hero")

    def test_non_positive_goals_rejected(self) -> None:
        with self.assertRaises(ValueError):
            db.create_user("villain", daily_calories=0)
        with self.assertRaises(ValueError):
            db.update_user_goals(self.user_id, -1, -5, -8)
        with db.user_transaction(self.user_id) as conn:
            self.assertEqual(db.get_user_goals(conn, self.user_id), {"daily_calories": 2000, "daily_protein": 100, "water_goal_oz": 64})


class FoodLogTests(DBIsolatedTestCase):
    def test_negative_nutrients_rejected(self) -> None:
        with self.assertRaises(ValueError):
            self.eat("breakfast", calories=-500)
        with self.assertRaises(ValueError):
            self.eat("breakfast", sodium=-10)
        with self.assertRaises(ValueError):
            self.eat("breakfast", fiber=201)
        self.assertEqual(db.get_food_logs(self.user_id, DAY)["logs"], [])

    def test_unknown_user_food_logs(self) -> None:
        with self.assertRaises(UserNotFound):
            db.get_food_logs(999, DAY)


class ProfileTests(DBIsolatedTestCase):
    def test_profile_replaces_calorie_and_protein_goals(self) -> None:
        result = db.save_profile(self.user_id, "lose", "male", 70, 180, 170, 30, "moderate")
        self.assertEqual((result["tdee"], result["daily_calories"], result["daily_protein"]), (2763, 2263, 136))
        profile = db.get_profile(self.user_id)
        self.assertTrue(profile["setup_complete"])
        self.assertEqual((profile["daily_calories"], profile["daily_protein"], profile["water_goal_oz"]), (2263, 136, 64))
        self.assertEqual((profile["sex"], profile["activity_level"], profile["goal_weight"]), ("male", "moderate", 170))

    def test_profile_goal_drives_protein_quest(self) -> None:
        db.save_profile(self.user_id, "maintain", "female", 65, 140, 100, 25, "light", water_goal_oz=96)
        self.add_quests("protein_target")
        self.eat("lunch", protein=80)
        result = engine.evaluate(self.user_id, today=DAY)
        self.assertEqual(result["evaluation"], {"completed": 1, "total": 1})
        self.assertEqual(result["combat"]["damage"], 1)
        with db.user_transaction(self.user_id) as conn:
            self.assertEqual(db.get_user_goals(conn, self.user_id)["water_goal_oz"], 96)

    def test_profile_rejects_unknown_choices(self) -> None:
        with self.assertRaises(ValueError):
            db.save_profile(self.user_id, "bulk", "male", 70, 180, 170, 30, "moderate")
        with self.assertRaises(ValueError):
            db.save_profile(self.user_id, "lose", "male", 70, 180, 170, 30, "couch")
        self.assertFalse(db.get_profile(self.user_id)["setup_complete"])

    def test_profile_for_unknown_user(self) -> None:
        with self.assertRaises(UserNotFound):
            db.save_profile(999, "lose", "male", 70, 180, 170, 30, "moderate")
        with self.assertRaises(UserNotFound):
            db.get_profile(999)


class NutritionSummaryTests(DBIsolatedTestCase):
    def test_week_groups_by_date(self) -> None:
        self.eat("breakfast", day="2026-02-23", protein=10)
        self.eat("breakfast", day="2026-02-24", protein=20)
        self.eat("lunch", day="2026-02-24", calories=301, protein=5)
        self.eat("dinner", day=DAY, protein=30)

        summary = db.get_nutrition_summary(self.user_id, "week", DAY)
        self.assertEqual((summary["start_date"], summary["end_date"]), ("2026-02-24", DAY))
        self.assertEqual([d["date"] for d in summary["daily"]], ["2026-02-24", DAY])
        self.assertEqual(summary["daily"][0]["calories"], 801)
        self.assertEqual((summary["totals"]["calories"], summary["totals"]["protein"]), (1301, 55))
        self.assertEqual((summary["averages"]["calories"], summary["averages"]["protein"]), (651, 28))
        self.assertEqual(summary["goals"]["daily_calories"], 2000)

    def test_day_and_empty_periods(self) -> None:
        self.eat("breakfast", day="2026-03-01")
        day = db.get_nutrition_summary(self.user_id, "day", DAY)
        self.assertEqual((day["daily"], day["totals"]["calories"], day["averages"]["calories"]), ([], 0, 0))
        month = db.get_nutrition_summary(self.user_id, "month", DAY)
        self.assertEqual(month["start_date"], "2026-02-01")
        self.assertEqual(month["totals"]["calories"], 500)

    def test_rejects_unknown_period_and_user(self) -> None:
        with self.assertRaises(ValueError):
            db.get_nutrition_summary(self.user_id, "year", DAY)
        with self.assertRaises(UserNotFound):
            db.get_nutrition_summary(999, "week", DAY)


class QuestGenerationTests(DBIsolatedTestCase):
    def test_generation_is_idempotent(self) -> None:
        first = engine.refresh_state(self.user_id, today=DAY, now=NOON)["quests"]
        second = engine.refresh_state(self.user_id, today=DAY, now=NOON)["quests"]
        self.assertEqual(len(first), 5)
        self.assertEqual([q["id"] for q in first], [q["id"] for q in second])

    def test_quest_count_follows_tier(self) -> None:
        self.set_character(dungeon_tier=3, enemy_hp=7, enemy_max_hp=7)
        quests = engine.refresh_state(self.user_id, today=DAY, now=NOON, rng=random.Random(11))["quests"]
        self.assertEqual(len(quests), 7)
        self.assertEqual([q["type"] for q in quests[:3]], ["log_breakfast", "log_lunch", "log_dinner"])
        self.assertTrue(all(not q["completed"] and q["xp_reward"] == 25 for q in quests))

    def test_unknown_tier_gets_five_quests(self) -> None:
        self.set_character(dungeon_tier=8)
        with self.assertLogs("nutriquest.engine", level="WARNING"):
            quests = engine.refresh_state(self.user_id, today=DAY, now=NOON)["quests"]
        self.assertEqual(len(quests), 5)

    def test_missing_character_is_a_no_op(self) -> None:
        with db.user_transaction(999) as conn:
            self.assertEqual(engine.ensure_today_quests(conn, 999, DAY), [])
            self.assertEqual(db.find_quests(conn, 999, DAY), [])

    def test_refresh_for_missing_character_raises(self) -> None:
        with self.assertRaises(CharacterNotFound):
            engine.refresh_state(999, today=DAY, now=NOON)

    def test_concurrent_first_loads_generate_once(self) -> None:
        results: list[list[int]] = []
        errors: list[BaseException] = []

        def worker() -> None:
            try:
                quests = engine.refresh_state(self.user_id, today=DAY, now=NOON)["quests"]
                results.append([q["id"] for q in quests])
            except BaseException as exc:
                errors.append(exc)

        threads = [threading.Thread(target=worker) for _ in range(6)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        self.assertEqual(errors, [])
        self.assertEqual(len(results), 6)
        self.assertTrue(all(ids == results[0] for ids in results))
        with db.user_transaction(self.user_id) as conn:
            self.assertEqual(len(db.find_quests(conn, self.user_id, DAY)), 5)


class EvaluationTests(DBIsolatedTestCase):
    def test_no_quests_returns_zeros(self) -> None:
        with db.user_transaction(self.user_id) as conn:
            result = engine.evaluate_quests(conn, self.user_id, DAY)
        self.assertEqual(result, {"completed": 0, "total": 0, "newly_completed": 0})

    def test_completion_is_monotonic(self) -> None:
        self.add_quests("log_breakfast", "fiber")
        log = self.eat("breakfast")
        first = engine.evaluate(self.user_id, today=DAY)
        self.assertEqual(first["evaluation"], {"completed": 1, "total": 2})

        self.assertTrue(db.delete_food_log(self.user_id, log["id"]))
        second = engine.evaluate(self.user_id, today=DAY)
        self.assertEqual(second["evaluation"], {"completed": 1, "total": 2})
        breakfast = next(q for q in second["quests"] if q["type"] == "log_breakfast")
        self.assertTrue(breakfast["completed"])

    def test_repeat_evaluation_does_not_double_reward(self) -> None:
        self.add_quests("log_breakfast", "log_lunch", "fiber")
        self.eat("breakfast")
        self.eat("lunch")
        first = engine.evaluate(self.user_id, today=DAY)
        self.assertEqual(first["combat"]["xp_gained"], 50)

        second = engine.evaluate(self.user_id, today=DAY)
        self.assertEqual(second["combat"]["xp_gained"], 0)
        self.assertEqual(second["combat"]["coins_gained"], 0)
        self.assertEqual(second["combat"]["damage"], 0)
        self.assertEqual(second["character"]["xp"], 50)
        self.assertEqual(second["character"]["enemy_hp"], 3)

    def test_evaluate_reports_thirst(self) -> None:
        self.add_quests("water_goal")
        result = engine.evaluate(self.user_id, today=DAY)
        self.assertEqual(result["thirst_meter"], 7)
        self.assertEqual(result["character"]["thirst_meter"], 7)


class CombatTests(DBIsolatedTestCase):
    def test_enemy_not_defeated_without_reaching_zero(self) -> None:
        self.add_quests("log_breakfast", "log_lunch", "log_dinner", "fruit_veg")
        self.eat("breakfast", is_fruit=True)
        self.eat("lunch")
        self.eat("dinner")

        result = engine.evaluate(self.user_id, today=DAY)
        self.assertEqual(result["evaluation"], {"completed": 4, "total": 4})
        self.assertFalse(result["combat"]["enemy_defeated"])
        self.assertEqual(result["character"]["enemy_hp"], 1)
        self.assertEqual(result["character"]["enemy_max_hp"], 5)
        self.assertEqual(result["combat"]["coins_gained"], 0)

    def test_enemy_at_zero_needs_every_quest_done(self) -> None:
        self.set_character(enemy_hp=1)
        self.add_quests("log_breakfast", "fiber")
        self.eat("breakfast")

        result = engine.evaluate(self.user_id, today=DAY)
        self.assertEqual(result["character"]["enemy_hp"], 0)
        self.assertFalse(result["combat"]["enemy_defeated"])

        self.eat("lunch", fiber=30)
        result = engine.evaluate(self.user_id, today=DAY)
        self.assertTrue(result["combat"]["enemy_defeated"])
        self.assertEqual(result["character"]["enemy_hp"], 5)

    def test_full_clear_defeats_enemy_and_pays_out(self) -> None:
        self.add_quests("log_breakfast", "log_lunch", "log_dinner", "fruit_veg", "fiber")
        self.eat("breakfast", is_vegetable=True)
        self.eat("lunch", fiber=20)
        self.eat("dinner", fiber=10)

        result = engine.evaluate(self.user_id, today=DAY)
        combat = result["combat"]
        self.assertTrue(combat["enemy_defeated"])
        self.assertEqual(combat["xp_gained"], 5 * 25 + 50)
        self.assertEqual(combat["coins_gained"], 20)
        self.assertTrue(combat["leveled_up"])
        self.assertEqual(combat["new_level"], 2)

        c = result["character"]
        self.assertEqual((c["level"], c["xp"], c["xp_to_next"]), (2, 75, 200))
        self.assertEqual((c["dungeon_tier"], c["enemy_hp"], c["enemy_max_hp"]), (1, 5, 5))
        self.assertEqual(c["coins"], 20)

        kinds = [e["kind"] for e in db.get_recent_events(self.user_id)]
        self.assertIn("enemy_defeated", kinds)
        self.assertIn("level_up", kinds)

    def test_tier_comes_from_post_level_up_level(self) -> None:
        self.set_character(level=14, xp=1390, xp_to_next=1400, dungeon_tier=1, enemy_hp=1, enemy_max_hp=5)
        self.add_quests("log_breakfast")
        self.eat("breakfast")

        result = engine.evaluate(self.user_id, today=DAY)
        self.assertTrue(result["combat"]["enemy_defeated"])
        c = result["character"]
        self.assertEqual(c["level"], 15)
        self.assertEqual(c["dungeon_tier"], 3)
        self.assertEqual((c["enemy_hp"], c["enemy_max_hp"]), (7, 7))
        self.assertEqual(c["xp_to_next"], c["level"] * 100)

    def test_combat_without_character_raises(self) -> None:
        with db.user_transaction(999) as conn:
            with self.assertRaises(CharacterNotFound):
                engine.resolve_combat(conn, 999, DAY, 2)

    def test_concurrent_evaluations_reward_once(self) -> None:
        self.add_quests("log_breakfast", "log_lunch", "log_dinner", "fiber", "fruit_veg")
        self.eat("breakfast", fiber=25, is_fruit=True)
        self.eat("lunch")
        self.eat("dinner")

        results: list[dict] = []
        errors: list[BaseException] = []

        def worker() -> None:
            try:
                results.append(engine.evaluate(self.user_id, today=DAY))
            except BaseException as exc:
                errors.append(exc)

        threads = [threading.Thread(target=worker) for _ in range(6)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        self.assertEqual(errors, [])
        self.assertEqual(sum(1 for r in results if r["combat"]["enemy_defeated"]), 1)
        self.assertEqual(sum(r["combat"]["xp_gained"] for r in results), 175)
        c = self.character()
        self.assertEqual((c["level"], c["xp"], c["coins"], c["enemy_hp"]), (2, 75, 20, 5))


class ThirstTests(DBIsolatedTestCase):
    def _thirst_after(self, glasses: int) -> int:
        with db.user_transaction(self.user_id) as conn:
            if glasses:
                db.insert_water_log(conn, self.user_id, DAY, glasses)
            return engine.update_thirst(conn, self.user_id, DAY)

    def test_thirst_bounds_for_eight_glass_goal(self) -> None:
        self.assertEqual(self._thirst_after(0), 7)
        self.assertEqual(self._thirst_after(8), 0)
        self.assertEqual(self._thirst_after(8), 0)
        self.assertEqual(self.character()["thirst_meter"], 0)

    def test_logging_water_awards_xp_and_updates_thirst(self) -> None:
        result = engine.log_water(self.user_id, 4, today=DAY)
        self.assertEqual(result["xp_gained"], 80)
        self.assertEqual(result["thirst_meter"], 4)
        self.assertEqual(self.character()["xp"], 80)

        summary = db.get_water_summary(self.user_id, DAY)
        self.assertEqual((summary["total_glasses"], summary["goal_glasses"]), (4, 8))

        deleted = engine.delete_water_log(self.user_id, result["water_log"]["id"], today=DAY)
        self.assertTrue(deleted["deleted"])
        self.assertEqual(deleted["thirst_meter"], 7)
        self.assertEqual(self.character()["xp"], 80)

    def test_water_for_missing_character_raises(self) -> None:
        with self.assertRaises(CharacterNotFound):
            engine.log_water(999, 2, today=DAY)


class WeeklyRolloverTests(DBIsolatedTestCase):
    def _rollover(self, now: datetime):
        with db.user_transaction(self.user_id) as conn:
            return engine.rollover_if_due(conn, self.user_id, now)

    def test_not_due_before_seven_days(self) -> None:
        self.set_character(health=2, thirst_meter=5)
        self.assertIsNone(self._rollover(NOON + timedelta(days=6, hours=23)))
        c = self.character()
        self.assertEqual((c["health"], c["thirst_meter"]), (2, 5))

    def test_failed_week_forfeits_xp_only(self) -> None:
        self.set_character(health=0, xp=80, level=8, xp_to_next=800, coins=40, dungeon_tier=2, thirst_meter=6)
        now = NOON + timedelta(days=7)
        outcome = self._rollover(now)
        self.assertEqual(outcome, {"failed": True, "xp_forfeited": 80})

        c = self.character()
        self.assertEqual(c["xp"], 0)
        self.assertEqual((c["level"], c["coins"], c["dungeon_tier"]), (8, 40, 2))
        self.assertEqual((c["health"], c["thirst_meter"]), (7, 0))
        self.assertEqual(datetime.fromisoformat(c["week_start_date"]), now)

        history = db.get_weekly_history(self.user_id)
        self.assertEqual(len(history), 1)
        self.assertTrue(history[0]["failed"])
        self.assertEqual((history[0]["week_start"], history[0]["week_end"]), ("2026-03-02", "2026-03-08"))

    def test_survived_week_keeps_xp(self) -> None:
        self.set_character(health=3, xp=80, thirst_meter=4)
        outcome = self._rollover(NOON + timedelta(days=9))
        self.assertEqual(outcome, {"failed": False, "xp_forfeited": 0})
        c = self.character()
        self.assertEqual((c["xp"], c["health"], c["thirst_meter"]), (80, 7, 0))
        self.assertFalse(db.get_weekly_history(self.user_id)[0]["failed"])

    def test_refresh_rolls_over_before_generating(self) -> None:
        self.set_character(health=0, xp=50)
        state = engine.refresh_state(self.user_id, today="2026-03-09", now=NOON + timedelta(days=7))
        self.assertEqual(state["character"]["health"], 7)
        self.assertEqual(state["character"]["xp"], 0)
        self.assertEqual(len(state["quests"]), 5)


class EndOfDayTests(DBIsolatedTestCase):
    def test_under_half_done_costs_one_health_once(self) -> None:
        self.add_quests("log_breakfast", "log_lunch", "log_dinner", "fiber", "protein_target")
        self.eat("breakfast")
        self.eat("lunch")

        result = engine.process_end_of_day(self.user_id, DAY)
        self.assertEqual((result["completed"], result["total"]), (2, 5))
        self.assertTrue(result["health_lost"])
        self.assertFalse(result["already_closed"])
        self.assertEqual(self.character()["health"], 6)

        again = engine.process_end_of_day(self.user_id, DAY)
        self.assertTrue(again["already_closed"])
        self.assertEqual(self.character()["health"], 6)

    def test_half_done_keeps_health(self) -> None:
        self.add_quests("log_breakfast", "log_lunch", "log_dinner", "fiber", "fruit_veg")
        self.eat("breakfast")
        self.eat("lunch")
        self.eat("dinner")

        result = engine.process_end_of_day(self.user_id, DAY)
        self.assertFalse(result["health_lost"])
        self.assertEqual(self.character()["health"], 7)
        # quests settled at close still pay out
        self.assertEqual(self.character()["xp"], 75)

    def test_health_floors_at_zero(self) -> None:
        self.set_character(health=0)
        self.add_quests("log_breakfast")
        result = engine.process_end_of_day(self.user_id, DAY)
        self.assertTrue(result["health_lost"])
        self.assertEqual(result["health"], 0)
        self.assertEqual(self.character()["health"], 0)

    def test_day_without_quests_is_not_punished(self) -> None:
        result = engine.process_end_of_day(self.user_id, DAY)
        self.assertFalse(result["health_lost"])
        self.assertEqual(self.character()["health"], 7)


if __name__ == "__main__":
    unittest.main()
