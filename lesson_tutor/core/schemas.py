"""
Structured-output contract for the model's turn evaluation.
"""

from enum import Enum
from typing import Annotated, Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, StringConstraints, ValidationError

from lesson_tutor.shared.exceptions import ResponseValidationError


class TurnIntent(str, Enum):
    """What the learner's message is."""
    ANSWER = "ANSWER"
    CLARIFY = "CLARIFY"
    OFFTOPIC = "OFFTOPIC"


class NextStep(str, Enum):
    """Model's progression suggestion."""
    ADVANCE = "ADVANCE"
    REINFORCE = "REINFORCE"
    RETRY = "RETRY"
    COMPLETE = "COMPLETE"


class ResponseTag(str, Enum):
    """Fixed evaluation tag vocabulary."""
    CORRECT = "CORRECT"
    PARTIAL = "PARTIAL"
    INCORRECT = "INCORRECT"
    CONCEPTUAL = "CONCEPTUAL"
    COMPUTATIONAL = "COMPUTATIONAL"
    NEEDS_HELP = "NEEDS_HELP"
    SHOWING_MASTERY = "SHOWING_MASTERY"


class Difficulty(str, Enum):
    EASY = "EASY"
    MEDIUM = "MEDIUM"
    HARD = "HARD"


MAX_HINTS = 3
MAX_SIGNALS = 5

Hint = Annotated[str, StringConstraints(max_length=100)]
Signal = Annotated[str, StringConstraints(max_length=50)]


class _Payload(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)


class ChatPayload(_Payload):
    message: str = Field(min_length=10, max_length=600)
    hints: List[Hint] = Field(default_factory=list, max_length=MAX_HINTS)


class ProgressPayload(_Payload):
    mastery_delta: float = Field(ge=-0.3, le=0.3, alias="masteryDelta")
    next_step: NextStep = Field(alias="nextStep")
    tags: List[ResponseTag] = Field(min_length=1, max_length=3)


class AnalyticsPayload(_Payload):
    difficulty: Optional[Difficulty] = None
    confidence_score: Optional[float] = Field(default=None, ge=0.0, le=1.0, alias="confidenceScore")
    reasoning_signals: List[Signal] = Field(
        default_factory=list, max_length=MAX_SIGNALS, alias="reasoningSignals"
    )


class ModelTurnResponse(_Payload):
    """Validated model output. Immutable: reconciliation returns copies."""
    turn_intent: TurnIntent = Field(alias="turnIntent")
    chat: ChatPayload
    progress: ProgressPayload
    analytics: AnalyticsPayload = Field(default_factory=AnalyticsPayload)

    @property
    def is_correct(self) -> bool:
        return ResponseTag.CORRECT in self.progress.tags

    def tag_values(self) -> List[str]:
        return [tag.value for tag in self.progress.tags]

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


_TAG_VALUES = [tag.value for tag in ResponseTag]

# JSON schema handed to the provider (OpenAI strict mode requires every key)
TURN_RESPONSE_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "turnIntent": {
            "type": "string",
            "enum": [intent.value for intent in TurnIntent]
        },
        "chat": {
            "type": "object",
            "properties": {
                "message": {"type": "string", "minLength": 10, "maxLength": 600},
                "hints": {
                    "type": "array",
                    "items": {"type": "string", "maxLength": 100},
                    "maxItems": MAX_HINTS
                }
            },
            "required": ["message", "hints"],
            "additionalProperties": False
        },
        "progress": {
            "type": "object",
            "properties": {
                "masteryDelta": {"type": "number", "minimum": -0.3, "maximum": 0.3},
                "nextStep": {"type": "string", "enum": [step.value for step in NextStep]},
                "tags": {
                    "type": "array",
                    "items": {"type": "string", "enum": _TAG_VALUES},
                    "minItems": 1,
                    "maxItems": 3
                }
            },
            "required": ["masteryDelta", "nextStep", "tags"],
            "additionalProperties": False
        },
        "analytics": {
            "type": "object",
            "properties": {
                "difficulty": {"type": "string", "enum": [d.value for d in Difficulty]},
                "confidenceScore": {"type": "number", "minimum": 0, "maximum": 1},
                "reasoningSignals": {
                    "type": "array",
                    "items": {"type": "string", "maxLength": 50},
                    "maxItems": MAX_SIGNALS
                }
            },
            "required": ["difficulty", "confidenceScore", "reasoningSignals"],
            "additionalProperties": False
        }
    },
    "required": ["turnIntent", "chat", "progress", "analytics"],
    "additionalProperties": False
}


def parse_turn_response(data: Any) -> ModelTurnResponse:
    """
    Validate raw model output against the turn contract.

    Raises:
        ResponseValidationError: the payload is rejected as a whole
    """
    try:
        return ModelTurnResponse.model_validate(data)
    except ValidationError as e:
        raise ResponseValidationError(
            f"Model response failed validation ({e.error_count()} errors): {e}"
        ) from e
