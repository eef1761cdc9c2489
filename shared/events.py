from enum import Enum
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional
import json


class EventType(str, Enum):
    # Access
    CODES_GENERATED = "codes.generated"
    CODE_REDEEMED = "code.redeemed"
    WAITLIST_APPROVED = "waitlist.approved"

    # Tournament lifecycle
    TOURNAMENT_CREATED = "tournament.created"
    TOURNAMENT_STATUS_CHANGED = "tournament.status_changed"

    # Submissions
    SUBMISSION_CREATED = "submission.created"
    SUBMISSION_MODERATED = "submission.moderated"

    # Voting
    VOTE_CAST = "vote.cast"
    VOTE_RETRACTED = "vote.retracted"


@dataclass
class Event:
    type: EventType
    tournament_id: Optional[str] = None
    timestamp: str = None
    data: dict = None

    def __post_init__(self):
        if self.timestamp is None:
            self.timestamp = datetime.now(timezone.utc).replace(tzinfo=None).isoformat() + "Z"
        if self.data is None:
            self.data = {}

    def to_dict(self) -> dict:
        return {
            "type": self.type.value if isinstance(self.type, EventType) else self.type,
            "tournament_id": self.tournament_id,
            "timestamp": self.timestamp,
            "data": self.data
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_dict(cls, data: dict) -> "Event":
        return cls(
            type=EventType(data["type"]) if data["type"] in [e.value for e in EventType] else data["type"],
            tournament_id=data.get("tournament_id"),
            timestamp=data.get("timestamp"),
            data=data.get("data", {})
        )

    @classmethod
    def from_json(cls, json_str: str) -> "Event":
        return cls.from_dict(json.loads(json_str))


def code_redeemed_event(access_code_id: int, redeemer_id: int, referrer_id: Optional[int]) -> Event:
    return Event(
        type=EventType.CODE_REDEEMED,
        data={
            "access_code_id": access_code_id,
            "redeemer_id": redeemer_id,
            "referrer_id": referrer_id
        }
    )


def tournament_status_event(tournament_id: str, from_state: str, to_state: str) -> Event:
    return Event(
        type=EventType.TOURNAMENT_STATUS_CHANGED,
        tournament_id=tournament_id,
        data={
            "from_state": from_state,
            "to_state": to_state
        }
    )


def submission_moderated_event(tournament_id: str, submission_id: int, user_id: int,
                               from_state: str, to_state: str) -> Event:
    return Event(
        type=EventType.SUBMISSION_MODERATED,
        tournament_id=tournament_id,
        data={
            "submission_id": submission_id,
            "user_id": user_id,
            "from_state": from_state,
            "to_state": to_state
        }
    )


def vote_event(event_type: EventType, tournament_id: str, submission_id: int, score: int) -> Event:
    return Event(
        type=event_type,
        tournament_id=tournament_id,
        data={
            "submission_id": submission_id,
            "score": score
        }
    )
