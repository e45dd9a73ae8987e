"""Tests for shared validator types, tag normalisation and query token extraction."""

from datetime import datetime, timedelta, timezone

import pytest
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from knowledge_service.models.knowledge import Recurrence, Reminder
from knowledge_service.models.validators import (
    ALL_SEARCH_METHODS,
    SearchMethods,
    Tags,
    UTCDateTime,
    normalize_tag,
    normalize_tags,
)
from knowledge_service.utils.tags import STOP_WORDS, extract_query_tags


class _TagModel(BaseModel):
    tags: Tags = []


class _TimeModel(BaseModel):
    at: UTCDateTime


class _MethodsModel(BaseModel):
    methods: SearchMethods = ALL_SEARCH_METHODS


class TestTags:
    def test_normalize_tag(self):
        assert normalize_tag("  Work! ") == "work"
        assert normalize_tag("Project Manager") == "project-manager"
        assert normalize_tag(None) == ""

    def test_comma_string(self):
        assert normalize_tags("Rent, bills ,RENT") == ["rent", "bills"]

    def test_single_characters_dropped(self):
        assert normalize_tags(["a", "bb"]) == ["bb"]

    def test_model_accepts_none(self):
        assert _TagModel(tags=None).tags == []

    def test_unsupported_type_gives_empty(self):
        assert normalize_tags(42) == []


class TestUTCDateTime:
    def test_naive_string_is_utc(self):
        value = _TimeModel(at="2025-01-31T09:00:00").at
        assert value == datetime(2025, 1, 31, 9, tzinfo=timezone.utc)

    def test_offset_is_converted(self):
        value = _TimeModel(at="2025-01-31T09:00:00+02:00").at
        assert value == datetime(2025, 1, 31, 7, tzinfo=timezone.utc)
        assert value.utcoffset() == timedelta(0)

    def test_date_only(self):
        assert _TimeModel(at="2025-01-31").at == datetime(2025, 1, 31, tzinfo=timezone.utc)

    def test_garbage_rejected(self):
        with pytest.raises(PydanticValidationError):
            _TimeModel(at="next tuesday-ish")


class TestSearchMethods:
    def test_default_is_all(self):
        assert _MethodsModel().methods == ("semantic", "text", "tags")

    def test_comma_string(self):
        assert _MethodsModel(methods="Text, tags").methods == ("text", "tags")

    def test_none_means_all(self):
        assert _MethodsModel(methods=None).methods == ALL_SEARCH_METHODS

    def test_unknown_method_rejected(self):
        with pytest.raises(PydanticValidationError):
            _MethodsModel(methods=["vibes"])

    def test_empty_rejected(self):
        with pytest.raises(PydanticValidationError):
            _MethodsModel(methods=[])


class TestReminderModel:
    def test_is_recurring_derived_from_rule(self):
        reminder = Reminder(
            owner_id="alice",
            project_id="home",
            content="water plants",
            scheduled_for="2025-03-11T08:00:00Z",
            recurrence=Recurrence(type="weekly"),
            is_recurring=False,
        )
        assert reminder.is_recurring is True

    def test_completed_requires_completed_at(self):
        with pytest.raises(PydanticValidationError):
            Reminder(
                owner_id="alice",
                project_id="home",
                content="x",
                scheduled_for="2025-03-11T08:00:00Z",
                is_completed=True,
            )

    def test_interval_must_be_positive(self):
        with pytest.raises(PydanticValidationError):
            Recurrence(type="daily", interval=0)


class TestExtractQueryTags:
    def test_stop_words_and_short_tokens_removed(self):
        assert extract_query_tags("when is the rent due for my flat") == ["rent", "due", "flat", "rent-due"]

    def test_tokens_normalised_and_deduplicated(self):
        assert extract_query_tags("Rent, RENT; bills/Bills") == ["rent", "bills"]

    def test_min_length(self):
        assert extract_query_tags("tax, due", min_length=4) == []
        assert extract_query_tags("tax due", min_length=4) == ["tax-due"]

    def test_adjacent_words_reach_multi_word_tags(self):
        tokens = extract_query_tags("Project Manager")
        assert tokens == ["project", "manager", "project-manager"]
        assert normalize_tag("Project Manager") in tokens

    def test_pairs_do_not_cross_separators_or_stop_words(self):
        assert extract_query_tags("rent, bills") == ["rent", "bills"]
        assert extract_query_tags("rent for flat") == ["rent", "flat"]

    def test_empty_query(self):
        assert extract_query_tags("") == []

    def test_stop_words_are_lowercase(self):
        assert all(word == word.lower() for word in STOP_WORDS)
