"""Domain enumerations for the ScoreFusion aggregation engine."""
from __future__ import annotations

from enum import Enum


class Sport(str, Enum):
    FOOTBALL = "football"
    BASKETBALL = "basketball"
    TENNIS = "tennis"
    BASEBALL = "baseball"
    HOCKEY = "hockey"
    AMERICAN_FOOTBALL = "american_football"
    CRICKET = "cricket"
    RUGBY = "rugby"
    MMA = "mma"
    BOXING = "boxing"
    VOLLEYBALL = "volleyball"

    @classmethod
    def parse(cls, raw: str | Sport) -> Sport:
        """
        Resolve a provider or user spelling to the canonical sport.

        Raises:
            ValueError: If the spelling is not recognised.
        """
        if isinstance(raw, Sport):
            return raw
        key = " ".join(str(raw).strip().lower().replace("_", " ").replace("-", " ").split())
        sport = _SPORT_ALIASES.get(key)
        if sport is None:
            raise ValueError(f"Unknown sport: {raw!r}")
        return sport


_SPORT_ALIASES: dict[str, Sport] = {
    "football": Sport.FOOTBALL,
    "soccer": Sport.FOOTBALL,
    "basketball": Sport.BASKETBALL,
    "tennis": Sport.TENNIS,
    "baseball": Sport.BASEBALL,
    "hockey": Sport.HOCKEY,
    "ice hockey": Sport.HOCKEY,
    "american football": Sport.AMERICAN_FOOTBALL,
    "nfl": Sport.AMERICAN_FOOTBALL,
    "cricket": Sport.CRICKET,
    "rugby": Sport.RUGBY,
    "rugby union": Sport.RUGBY,
    "rugby league": Sport.RUGBY,
    "mma": Sport.MMA,
    "fighting": Sport.MMA,
    "boxing": Sport.BOXING,
    "volleyball": Sport.VOLLEYBALL,
}


class MatchStatus(str, Enum):
    SCHEDULED = "scheduled"
    LIVE = "live"
    FINISHED = "finished"
    POSTPONED = "postponed"
    CANCELLED = "cancelled"

    @property
    def progress(self) -> int:
        """Ordering used when two providers disagree: scheduled < live < finished."""
        return _STATUS_PROGRESS[self]

    @property
    def has_score(self) -> bool:
        return self in (MatchStatus.LIVE, MatchStatus.FINISHED)


_STATUS_PROGRESS: dict[MatchStatus, int] = {
    MatchStatus.SCHEDULED: 0,
    MatchStatus.POSTPONED: 0,
    MatchStatus.LIVE: 1,
    MatchStatus.FINISHED: 2,
    MatchStatus.CANCELLED: 2,
}


class ProviderName(str, Enum):
    API_FOOTBALL = "api_football"
    SPORTMONKS = "sportmonks"
    THESPORTSDB = "thesportsdb"
    ESPN = "espn"

    @property
    def id_prefix(self) -> str:
        """Prefix used to qualify provider IDs into CanonicalMatch.external_id."""
        return _ID_PREFIXES[self]


_ID_PREFIXES: dict[ProviderName, str] = {
    ProviderName.API_FOOTBALL: "apifootball",
    ProviderName.SPORTMONKS: "sportmonks",
    ProviderName.THESPORTSDB: "tsdb",
    ProviderName.ESPN: "espn",
}


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    DOWN = "down"


class DataSource(str, Enum):
    API = "api"
    DATABASE = "database"
    AUTO = "auto"


class EventType(str, Enum):
    GOAL = "goal"
    OWN_GOAL = "own_goal"
    PENALTY = "penalty"
    PENALTY_MISS = "penalty_miss"
    YELLOW_CARD = "yellow_card"
    RED_CARD = "red_card"
    SUBSTITUTION = "substitution"
    VAR_DECISION = "var_decision"
    GENERIC = "generic"


class TeamSide(str, Enum):
    HOME = "home"
    AWAY = "away"
