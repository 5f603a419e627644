from __future__ import annotations

from .config import settings

MAX_POINTS = 1000
MIN_PLAYERS_TO_START = 2
MAX_PLAYERS_LIMIT = settings.max_players_limit
DEFAULT_MAX_PLAYERS = settings.default_max_players
DEFAULT_TIME_PER_QUESTION = settings.default_time_per_question
MIN_TIME_PER_QUESTION = 5
MAX_TIME_PER_QUESTION = 300
MAX_CHAT_LENGTH = 500
ROOM_CODE_CHARS = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
OPTION_LETTERS = "ABCDEFGHIJKLMNOPQRSTUVWXYZ"

WINNER_XP = 200
XP_STEP_PER_RANK = 30
MIN_XP_REWARD = 50
XP_PER_LEVEL = 1000
CHAMPION_BADGE = "Multiplayer Champion"
XP_LOG_SOURCE = "multiplayer"

TIMER_KEYS = ("question", "advance", "finish", "cleanup")
