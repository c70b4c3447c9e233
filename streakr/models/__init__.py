from streakr import db  # noqa: F401 - imported for model imports

from .admin_action import AdminAction
from .comment import QuestionComment
from .game import Game
from .league import League, LeagueMember
from .pick import Pick
from .power_up import FreeKickUse, PanicUse
from .question import Question
from .round import Round
from .streak import ScoredPick, StreakAggregate
from .user import User
from .venue import Venue

__all__ = [
    "User",
    "Round",
    "Game",
    "Question",
    "Pick",
    "StreakAggregate",
    "ScoredPick",
    "PanicUse",
    "FreeKickUse",
    "QuestionComment",
    "League",
    "LeagueMember",
    "Venue",
    "AdminAction",
]
