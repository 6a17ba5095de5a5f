from __future__ import annotations

from datetime import date as calendar_date

from fastapi import FastAPI, Form, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from nutriquest import db, engine
from nutriquest.content import DEFAULT_GOALS, GOAL_LIMITS, MEAL_TYPES, NUTRIENT_LIMITS
from nutriquest.errors import CharacterNotFound, UserNotFound

app = FastAPI(title="NutriQuest")


@app.on_event("startup")
def startup() -> None:
    db.init_db()


@app.exception_handler(CharacterNotFound)
@app.exception_handler(UserNotFound)
async def not_found_handler(_request: Request, exc: Exception) -> JSONResponse:
    return JSONResponse({"error": str(exc)}, status_code=404)


@app.exception_handler(RequestValidationError)
async def invalid_input_handler(_request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse({"error": "Invalid input", "detail": jsonable_encoder(exc.errors())}, status_code=400)


def _date_or_today(raw: str | None) -> str:
    if not raw:
        return db.today_key()
    try:
        return calendar_date.fromisoformat(raw).isoformat()
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid date {raw!r}")


@app.post("/users", status_code=201)
def register(
    username: str = Form(...),
    daily_calories: int = Form(DEFAULT_GOALS["daily_calories"], ge=1, le=GOAL_LIMITS["daily_calories"]),
    daily_protein: int = Form(DEFAULT_GOALS["daily_protein"], ge=1, le=GOAL_LIMITS["daily_protein"]),
    water_goal_oz: int = Form(DEFAULT_GOALS["water_goal_oz"], ge=1, le=GOAL_LIMITS["water_goal_oz"]),
) -> dict:
    try:
        user = db.create_user(username, daily_calories, daily_protein, water_goal_oz)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return {"user": user, "character": db.load_character(user["id"])}


@app.post("/users/{user_id}/goals")
def update_goals(
    user_id: int,
    daily_calories: int = Form(..., ge=1, le=GOAL_LIMITS["daily_calories"]),
    daily_protein: int = Form(..., ge=1, le=GOAL_LIMITS["daily_protein"]),
    water_goal_oz: int = Form(..., ge=1, le=GOAL_LIMITS["water_goal_oz"]),
) -> dict:
    try:
        return {"goals": db.update_user_goals(user_id, daily_calories, daily_protein, water_goal_oz)}
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))


@app.get("/users/{user_id}/profile")
def profile(user_id: int) -> dict:
    return {"user": db.get_profile(user_id)}


@app.post("/users/{user_id}/profile")
def save_profile(
    user_id: int,
    mode: str = Form(...),
    sex: str = Form(...),
    height_inches: int = Form(..., ge=48, le=96),
    current_weight: float = Form(..., ge=50, le=700),
    goal_weight: float = Form(..., ge=50, le=700),
    age: int = Form(..., ge=13, le=120),
    activity_level: str = Form(...),
    water_goal_oz: int | None = Form(None, ge=32, le=256),
) -> dict:
    try:
        return db.save_profile(
            user_id,
            mode,
            sex,
            height_inches,
            current_weight,
            goal_weight,
            age,
            activity_level,
            water_goal_oz=water_goal_oz,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))


@app.get("/users/{user_id}/nutrition/summary")
def nutrition_summary(user_id: int, period: str = "day", date: str | None = None) -> dict:
    try:
        return db.get_nutrition_summary(user_id, period, _date_or_today(date))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))


@app.get("/users/{user_id}/food")
def food_logs(user_id: int, date: str | None = None) -> dict:
    return db.get_food_logs(user_id, _date_or_today(date))


@app.post("/users/{user_id}/food", status_code=201)
def log_food(
    user_id: int,
    meal_type: str = Form(...),
    food_name: str = Form(..., min_length=1, max_length=200),
    calories: float = Form(..., ge=0, le=NUTRIENT_LIMITS["calories"]),
    protein: float = Form(0, ge=0, le=NUTRIENT_LIMITS["protein"]),
    carbs: float = Form(0, ge=0, le=NUTRIENT_LIMITS["carbs"]),
    fat: float = Form(0, ge=0, le=NUTRIENT_LIMITS["fat"]),
    fiber: float = Form(0, ge=0, le=NUTRIENT_LIMITS["fiber"]),
    sodium: float = Form(0, ge=0, le=NUTRIENT_LIMITS["sodium"]),
    sugar: float = Form(0, ge=0, le=NUTRIENT_LIMITS["sugar"]),
    is_fruit: bool = Form(False),
    is_vegetable: bool = Form(False),
    date: str | None = Form(None),
) -> dict:
    if meal_type not in MEAL_TYPES:
        raise HTTPException(status_code=400, detail=f"meal_type must be one of {', '.join(MEAL_TYPES)}")
    try:
        food_log = db.log_food(
            user_id,
            _date_or_today(date),
            meal_type,
            food_name,
            calories,
            protein=protein,
            carbs=carbs,
            fat=fat,
            fiber=fiber,
            sodium=sodium,
            sugar=sugar,
            is_fruit=is_fruit,
            is_vegetable=is_vegetable,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return {"food_log": food_log}


@app.delete("/users/{user_id}/food/{log_id}")
def delete_food(user_id: int, log_id: int) -> dict:
    if not db.delete_food_log(user_id, log_id):
        raise HTTPException(status_code=404, detail="Food log not found")
    return {"message": "Deleted"}


@app.get("/users/{user_id}/water")
def water_logs(user_id: int, date: str | None = None) -> dict:
    return db.get_water_summary(user_id, _date_or_today(date))


@app.post("/users/{user_id}/water", status_code=201)
def log_water(user_id: int, glasses: int = Form(..., ge=1, le=20), date: str | None = Form(None)) -> dict:
    return engine.log_water(user_id, glasses, for_date=_date_or_today(date))


@app.delete("/users/{user_id}/water/{log_id}")
def delete_water(user_id: int, log_id: int) -> dict:
    result = engine.delete_water_log(user_id, log_id)
    if not result["deleted"]:
        raise HTTPException(status_code=404, detail="Water log not found")
    return {"message": "Deleted", "thirst_meter": result["thirst_meter"]}


@app.get("/users/{user_id}/game/state")
def game_state(user_id: int) -> dict:
    return engine.refresh_state(user_id)


@app.post("/users/{user_id}/game/evaluate")
def game_evaluate(user_id: int) -> dict:
    return engine.evaluate(user_id)


@app.post("/users/{user_id}/game/end-of-day")
def game_end_of_day(user_id: int, for_date: str | None = Form(None)) -> dict:
    return engine.process_end_of_day(user_id, _date_or_today(for_date))


@app.get("/users/{user_id}/game/history")
def game_history(user_id: int) -> dict:
    return {"records": db.get_weekly_history(user_id)}


@app.get("/users/{user_id}/game/events")
def game_events(user_id: int, limit: int = 20) -> dict:
    return {"events": db.get_recent_events(user_id, max(1, min(100, limit)))}
