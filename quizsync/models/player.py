from typing import Optional

from pydantic import BaseModel


class Player(BaseModel):
    id: str
    session_id: str
    nickname: str
    avatar_url: Optional[str] = None
    score: int = 0
    joined_at: Optional[float] = None

    def summary(self) -> dict:
        return {"id": self.id, "nickname": self.nickname, "score": self.score}
