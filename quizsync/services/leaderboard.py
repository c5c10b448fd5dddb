from typing import Iterable, List, Optional

from quizsync.models.events import LeaderboardEntry
from quizsync.models.player import Player


def rank(players: Iterable, limit: Optional[int] = None) -> List:
    """Order players by score, highest first.

    The sort is stable, so players on equal scores keep their incoming order
    and ranking an already ranked list returns it unchanged.
    """
    ordered = sorted(players, key=lambda p: p.score, reverse=True)
    return ordered[:limit] if limit else ordered


def snapshot(players: Iterable[Player], limit: Optional[int] = None) -> List[LeaderboardEntry]:
    return [
        LeaderboardEntry(id=p.id, nickname=p.nickname, score=p.score)
        for p in rank(players, limit)
    ]
