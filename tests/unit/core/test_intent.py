"""
Tests for the heuristic turn-intent classifier.
"""

import pytest

from lesson_tutor.core.intent import (
    detect_turn_intent,
    extract_clarification_term,
    is_clarification_request,
    is_offtopic,
    is_short_bare_question,
)
from lesson_tutor.core.schemas import TurnIntent


@pytest.mark.parametrize("text", [
    "what do you mean by hazard?",
    "What is a hazard?",
    "what's IPERC",
    "What does severity mean?",
    "I don't understand the question",
    "I'm confused about the matrix",
    "Could you explain what a control is?",
    "¿Qué es un peligro?",
    "No entiendo la pregunta",
    "explícame otra vez",
])
def test_clarification_requests(text):
    assert detect_turn_intent(text) == TurnIntent.CLARIFY


def test_confusion_keyword_needs_question_mark():
    assert is_clarification_request("so the floor, not sure what you want here?")
    assert not is_clarification_request("I am sure the floor is the hazard, so not sure what else")


@pytest.mark.parametrize("text", ["hello", "Hi!", "thanks", "Thank you!", "hola", "gracias", "good morning"])
def test_short_greetings_are_offtopic(text):
    assert detect_turn_intent(text) == TurnIntent.OFFTOPIC


def test_greeting_inside_long_answer_is_an_answer():
    text = "Hello, the hazard is the wet floor and the risk is slipping on it"
    assert not is_offtopic(text)
    assert detect_turn_intent(text) == TurnIntent.ANSWER


def test_greeting_words_are_word_bounded():
    assert not is_offtopic("this is it")
    assert not is_offtopic("they hide it")


@pytest.mark.parametrize("text", ["hazard?", "¿IPERC?", "the matrix?"])
def test_short_bare_questions_are_clarify(text):
    assert is_short_bare_question(text)
    assert detect_turn_intent(text) == TurnIntent.CLARIFY


@pytest.mark.parametrize("text", ["yes?", "no?", "maybe?", "¿sí?"])
def test_yes_no_replies_are_answers(text):
    assert not is_short_bare_question(text)
    assert detect_turn_intent(text) == TurnIntent.ANSWER


@pytest.mark.parametrize("text", ["Is it the exposed wire?", "the wet floor maybe?"])
def test_tentative_answers_phrased_as_questions_are_answers(text):
    assert not is_short_bare_question(text)
    assert detect_turn_intent(text) == TurnIntent.ANSWER


def test_long_question_is_not_short_bare_question():
    text = "could the hazard be the forklift moving near people?"
    assert not is_short_bare_question(text)
    assert detect_turn_intent(text) == TurnIntent.ANSWER


@pytest.mark.parametrize("text", [
    "A hazard is a source of harm; a risk is its probability and severity.",
    "Noise is a physical hazard",
    "",
    "   ",
])
def test_plain_answers(text):
    assert detect_turn_intent(text) == TurnIntent.ANSWER


@pytest.mark.parametrize("text,term", [
    ("what do you mean by hazard?", "hazard"),
    ("What is a risk matrix?", "risk matrix"),
    ("what does severity mean?", "severity"),
    ("¿Qué es un peligro?", "peligro"),
    ("IPERC?", "iperc"),
])
def test_extract_clarification_term(text, term):
    assert extract_clarification_term(text) == term


def test_extract_clarification_term_none_for_answers():
    assert extract_clarification_term("The hazard is the wet floor.") is None
