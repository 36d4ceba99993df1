"""
Heuristic turn-intent classifier (English and Spanish).

Runs independently of the model's own intent claim; the orchestrator uses it
to override an evaluation whenever the learner was plainly asking for
clarification.
"""

import re
from typing import Optional

from lesson_tutor.core.schemas import TurnIntent


SHORT_QUESTION_MAX_CHARS = 15
OFFTOPIC_MAX_CHARS = 20

# Anchored at the start of the (lower-cased, "¿"-stripped) text
_CLARIFY_PREFIXES = [
    # Definitional questions
    r"what(?:'s| is| are) ",
    r"what does .+ mean",
    r"what do you mean",
    r"what is meant by",
    r"meaning of ",
    r"define ",
    r"qu[eé] (?:es|son|significa|quiere decir)\b",
    r"a qu[eé] te refieres",
    r"c[oó]mo es\b",
    r"cu[aá]l es\b",
    # Confusion
    r"i (?:don'?t|do not) (?:understand|get|know what)",
    r"i'?m (?:confused|lost|not sure what)",
    r"i am (?:confused|lost|not sure what)",
    r"no (?:entiendo|comprendo|me queda claro)",
    r"no s[eé] (?:qu[eé] es|a qu[eé])",
    r"estoy confundid[oa]",
    r"me confunde",
    # Requests for explanation
    r"(?:can|could|would) you (?:please )?(?:explain|clarify|tell me what)",
    r"please explain",
    r"explain\b",
    r"(?:puedes|podr[ií]as) explicar",
    r"(?:me puedes|me podr[ií]as) decir",
    r"expl[ií]ca(?:me)?\b",
]
_CLARIFY_START = re.compile(r"^(?:" + "|".join(_CLARIFY_PREFIXES) + r")")

# Anywhere in the text, counted only when the text is also a question
_CONFUSION_KEYWORDS = (
    "what do you mean",
    "what does that mean",
    "don't understand",
    "do not understand",
    "not sure what",
    "clarify",
    "no entiendo",
    "no comprendo",
    "qué significa",
    "que significa",
    "a qué te refieres",
    "no me queda claro",
    "aclarar",
    "clarificar",
)

_YES_NO_REPLIES = {
    "yes", "no", "yeah", "nope", "maybe", "sure", "ok", "okay", "right", "true", "false",
    "sí", "si", "tal vez", "quizás", "quizas", "claro", "verdad",
}

_OFFTOPIC_PATTERN = re.compile(
    r"\b(?:hi|hello|hey|bye|goodbye|thanks|thank you|thx|good morning|good afternoon|"
    r"good evening|good night|how are you|see you|hola|adi[oó]s|chau|gracias|"
    r"buenos d[ií]as|buenas tardes|buenas noches|qu[eé] tal|c[oó]mo est[aá]s)\b"
)

_TERM_PATTERNS = [
    re.compile(r"what do you mean by (?:a |an |the )?(.+?)[?.!]*$"),
    re.compile(r"what is meant by (?:a |an |the )?(.+?)[?.!]*$"),
    re.compile(r"what does (?:a |an |the )?(.+?) mean[?.!]*$"),
    re.compile(r"what(?:'s| is| are) (?:a |an |the )?(.+?)[?.!]*$"),
    re.compile(r"qu[eé] (?:es|son) (?:un |una |el |la |los |las )?(.+?)[?.!]*$"),
    re.compile(r"qu[eé] significa (.+?)[?.!]*$"),
    re.compile(r"a qu[eé] te refieres con (.+?)[?.!]*$"),
    re.compile(r"i (?:don'?t|do not) understand (?:what )?(.+?)(?: is| means)?[?.!]*$"),
    re.compile(r"no entiendo (?:qu[eé] es |qu[eé] son |lo de )?(.+?)[?.!]*$"),
    re.compile(r"^(\w[\w\s-]{0,40}?)\?$"),
]


def _normalize(text: str) -> str:
    return re.sub(r"\s+", " ", text.strip().lower()).lstrip("¿¡ ")


def is_clarification_request(text: str) -> bool:
    """Definitional question, confusion phrase, or confusion keyword in a question."""
    if not text or not text.strip():
        return False

    normalized = _normalize(text)
    if _CLARIFY_START.match(normalized):
        return True

    return "?" in normalized and any(k in normalized for k in _CONFUSION_KEYWORDS)


def is_short_bare_question(text: str) -> bool:
    """Short question ("hazard?", "¿IPERC?") that is not a yes/no reply."""
    normalized = _normalize(text)
    if not normalized.endswith("?") or len(normalized) > SHORT_QUESTION_MAX_CHARS:
        return False

    bare = normalized.strip("¿? ")
    return bool(bare) and bare not in _YES_NO_REPLIES


def is_offtopic(text: str) -> bool:
    """Short greeting, farewell or thanks."""
    stripped = text.strip()
    if not stripped or len(stripped) >= OFFTOPIC_MAX_CHARS:
        return False
    return bool(_OFFTOPIC_PATTERN.search(_normalize(stripped)))


def detect_turn_intent(text: str) -> TurnIntent:
    """Classify raw learner text as ANSWER, CLARIFY or OFFTOPIC."""
    if is_clarification_request(text):
        return TurnIntent.CLARIFY
    if is_offtopic(text):
        return TurnIntent.OFFTOPIC
    if is_short_bare_question(text):
        return TurnIntent.CLARIFY
    return TurnIntent.ANSWER


def extract_clarification_term(text: str) -> Optional[str]:
    """Term the learner is asking about, if one can be picked out."""
    normalized = _normalize(text)
    for pattern in _TERM_PATTERNS:
        match = pattern.search(normalized)
        if match and match.group(1).strip():
            return match.group(1).strip()
    return None
