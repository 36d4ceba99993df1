"""
Tests for lesson models and the YAML lesson catalog.
"""

from pathlib import Path

import pytest
import yaml
from pydantic import ValidationError

from lesson_tutor.lesson.catalog import LessonCatalog, load_lesson_file
from lesson_tutor.lesson.models import Lesson
from lesson_tutor.shared.exceptions import LessonContentError, LessonNotFoundError

REPO_LESSONS = Path(__file__).resolve().parents[3] / "lessons"


def test_lesson_lookup_helpers(sample_lesson):
    assert sample_lesson.moment(2).primary_target_id == "hazard_types"
    assert sample_lesson.target("risk_rating").weight == 2.0
    assert sample_lesson.next_moment(4) is None
    assert sample_lesson.next_moment(0).id == 1
    assert sample_lesson.is_last_moment(4)
    assert sample_lesson.target_weights()["risk_rating"] == 2.0

    with pytest.raises(KeyError):
        sample_lesson.moment(5)
    with pytest.raises(KeyError):
        sample_lesson.target("missing")


def test_graduated_hints(sample_lesson):
    target = sample_lesson.target("hazard_vs_risk")
    assert target.hint(1) == "Subtle hint"
    assert target.hint(3) == "Explicit hint"
    assert target.hint(7) == "Explicit hint"
    assert target.rubric_level(4).name == "Advanced"


def test_lesson_is_immutable(sample_lesson):
    with pytest.raises(ValidationError):
        sample_lesson.title = "Other"


def test_moment_ids_must_be_ordinal(lesson_data):
    lesson_data["moments"][1]["id"] = 7
    with pytest.raises(ValidationError):
        Lesson.model_validate(lesson_data)


def test_primary_target_must_exist(lesson_data):
    lesson_data["moments"][0]["primary_target_id"] = "ghost"
    with pytest.raises(ValidationError):
        Lesson.model_validate(lesson_data)


def test_rubric_needs_five_ordered_levels(lesson_data):
    lesson_data["targets"][0]["rubric"] = lesson_data["targets"][0]["rubric"][:4]
    with pytest.raises(ValidationError):
        Lesson.model_validate(lesson_data)


def test_at_most_three_hints(lesson_data):
    lesson_data["targets"][0]["hints"].append("Fourth hint")
    with pytest.raises(ValidationError):
        Lesson.model_validate(lesson_data)


def test_min_mastery_range(lesson_data):
    lesson_data["targets"][0]["min_mastery"] = 1.2
    with pytest.raises(ValidationError):
        Lesson.model_validate(lesson_data)


def test_catalog_from_directory(tmp_path, lesson_data):
    (tmp_path / "one.yaml").write_text(yaml.safe_dump({"lesson": lesson_data}), encoding="utf-8")
    other = dict(lesson_data, id="safety_102")
    (tmp_path / "two.yml").write_text(yaml.safe_dump(other), encoding="utf-8")

    catalog = LessonCatalog.from_directory(tmp_path)

    assert len(catalog) == 2
    assert "safety_101" in catalog
    assert catalog.get("safety_102").title == lesson_data["title"]


def test_catalog_missing_directory_is_empty(tmp_path):
    assert len(LessonCatalog.from_directory(tmp_path / "absent")) == 0


def test_catalog_unknown_lesson(catalog):
    with pytest.raises(LessonNotFoundError):
        catalog.get("unknown")


def test_catalog_rejects_duplicate_ids(sample_lesson):
    with pytest.raises(LessonContentError):
        LessonCatalog([sample_lesson, sample_lesson])


def test_invalid_lesson_file(tmp_path, lesson_data):
    lesson_data["moments"] = []
    path = tmp_path / "bad.yaml"
    path.write_text(yaml.safe_dump({"lesson": lesson_data}), encoding="utf-8")

    with pytest.raises(LessonContentError):
        load_lesson_file(path)


def test_bundled_lesson_loads():
    catalog = LessonCatalog.from_directory(REPO_LESSONS)
    lesson = catalog.get("iperc_01")
    assert len(lesson.moments) == 5
    assert all(len(target.rubric) == 5 for target in lesson.targets)
