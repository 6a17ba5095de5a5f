from __future__ import annotations


class NutriQuestError(Exception):
    pass


class CharacterNotFound(NutriQuestError):
    def __init__(self, user_id: int) -> None:
        super().__init__(f"No character for user {user_id}")
        self.user_id = user_id


class UserNotFound(NutriQuestError):
    def __init__(self, user_id: int) -> None:
        super().__init__(f"Unknown user {user_id}")
        self.user_id = user_id
