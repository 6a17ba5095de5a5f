from __future__ import annotations

import logging
from datetime import date, timedelta

from nutriquest import db, engine
from nutriquest.errors import CharacterNotFound

logger = logging.getLogger(__name__)


def run_midnight_tick(today: str | None = None) -> dict:
    """Close yesterday for every user. Safe to run more than once per night."""
    today = today or db.today_key()
    yesterday = (date.fromisoformat(today) - timedelta(days=1)).isoformat()

    conn = db.get_conn()
    try:
        user_ids = db.list_user_ids(conn)
    finally:
        conn.close()

    closed = 0
    health_lost = 0
    for user_id in user_ids:
        try:
            result = engine.process_end_of_day(user_id, yesterday)
        except CharacterNotFound:
            logger.warning("User %s has no character; skipping day close", user_id)
            continue
        if result["already_closed"]:
            continue
        closed += 1
        if result["health_lost"]:
            health_lost += 1
    return {"today": today, "yesterday": yesterday, "closed": closed, "health_lost": health_lost}


def main() -> None:
    logging.basicConfig(level=logging.INFO)
    db.init_db()
    result = run_midnight_tick()
    logger.info("Closed %s for %d user(s); %d lost health.", result["yesterday"], result["closed"], result["health_lost"])


if __name__ == "__main__":
    main()
