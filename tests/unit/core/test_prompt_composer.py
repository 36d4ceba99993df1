"""
Tests for the prompt composer.
"""

from lesson_tutor.core.prompt.composer import FALLBACK_SYSTEM_PROMPT, PromptComposer, PromptSlots
from lesson_tutor.shared.tokens import count_tokens


def _slots(sample_lesson, **kwargs):
    moment = sample_lesson.moment(1)
    defaults = dict(
        lesson=sample_lesson,
        moment=moment,
        target=sample_lesson.target(moment.primary_target_id),
        target_mastery=0.45,
        attempts=1,
        summary="[STATE] M1/5. [PLAN] Ask again.",
        question_shown="What is the difference between a hazard and a risk?",
        student_answer="The hazard is the floor, the risk is slipping.",
    )
    defaults.update(kwargs)
    return PromptSlots(**defaults)


def test_fallback_system_prompt_when_file_missing(composer, sample_lesson):
    prompt = composer.compose(_slots(sample_lesson))
    assert prompt.system_prompt == FALLBACK_SYSTEM_PROMPT


def test_system_prompt_loaded_from_file(tmp_path, sample_lesson):
    path = tmp_path / "system.md"
    path.write_text("You are a tutor.\n", encoding="utf-8")
    prompt = PromptComposer(system_prompt_path=path).compose(_slots(sample_lesson))
    assert prompt.system_prompt == "You are a tutor."


def test_sections_in_order(composer, sample_lesson):
    prompt = composer.compose(_slots(sample_lesson))
    text = prompt.user_prompt

    headers = ["## Lesson", "## Active target", "## Current moment", "## Session summary", "## Current turn"]
    positions = [text.index(header) for header in headers]
    assert positions == sorted(positions)
    assert "do not reuse verbatim" in text
    assert "level 3" in text
    assert "Hint for this attempt: Direct hint" in text


def test_rubric_excerpt_around_current_level(composer, sample_lesson):
    text = composer.compose(_slots(sample_lesson, target_mastery=0.1)).user_prompt
    assert "- L1 " in text
    assert "- L2 " in text
    assert "- L4 " not in text


def test_sections_capped_independently(tmp_path, sample_lesson):
    composer = PromptComposer(
        system_prompt_path=tmp_path / "missing.md",
        budget={"summary": 20},
    )
    long_summary = "risk " * 500
    prompt = composer.compose(_slots(sample_lesson, summary=long_summary))

    # Small slack for re-encoding at the truncation boundary
    assert prompt.section_tokens["summary"] <= 22
    # The current exchange is never cut
    assert "The hazard is the floor, the risk is slipping." in prompt.user_prompt


def test_current_turn_uncapped(composer, sample_lesson):
    answer = "hazard " * 800
    prompt = composer.compose(_slots(sample_lesson, student_answer=answer))
    assert answer in prompt.user_prompt


def test_recent_turns_keep_newest_within_budget(tmp_path, sample_lesson):
    composer = PromptComposer(
        system_prompt_path=tmp_path / "missing.md",
        budget={"recent_turns": 40},
        recent_turns=3,
    )
    messages = [
        {"role": "user" if i % 2 == 0 else "assistant", "content": f"message number {i} " + "pad " * 8}
        for i in range(6)
    ]
    text = composer.compose(_slots(sample_lesson, recent_messages=messages)).user_prompt

    assert "message number 5" in text
    assert "message number 0" not in text
    # Chronological order inside the section
    if "message number 4" in text:
        assert text.index("message number 4") < text.index("message number 5")


def test_recent_turns_limited_to_k_exchanges(composer, sample_lesson):
    messages = [{"role": "user", "content": f"turn {i}"} for i in range(10)]
    text = composer.compose(_slots(sample_lesson, recent_messages=messages)).user_prompt
    assert "turn 9" in text
    assert "turn 3" not in text


def test_section_token_accounting(composer, sample_lesson):
    prompt = composer.compose(_slots(sample_lesson))
    assert prompt.total_tokens == sum(prompt.section_tokens.values())
    assert prompt.section_tokens["lesson"] <= 100
    assert prompt.section_tokens["current_turn"] == count_tokens(
        "## Current turn\n"
        "Question shown: What is the difference between a hazard and a risk?\n"
        "Learner message: The hazard is the floor, the risk is slipping."
    )
