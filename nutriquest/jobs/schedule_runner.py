from __future__ import annotations

import logging
from datetime import datetime

from nutriquest import db
from nutriquest.jobs.midnight_tick import run_midnight_tick

logger = logging.getLogger(__name__)

MIDNIGHT_WINDOW_MINUTES = 15


def get_schedule_context(now: datetime | None = None) -> dict:
    now = now or datetime.now()
    return {"local_date": now.date().isoformat(), "local_hour": now.hour, "local_minute": now.minute}


def main() -> None:
    logging.basicConfig(level=logging.INFO)
    ctx = get_schedule_context()

    # Run this command every 5-10 minutes via cron/systemd timer.
    if ctx["local_hour"] == 0 and ctx["local_minute"] < MIDNIGHT_WINDOW_MINUTES:
        db.init_db()
        result = run_midnight_tick(ctx["local_date"])
        logger.info("Midnight tick closed %s for %d user(s)", result["yesterday"], result["closed"])


if __name__ == "__main__":
    main()
