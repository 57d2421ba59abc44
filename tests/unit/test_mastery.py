"""
Tests for the core mastery types and the fixed-window calculator.
"""

from __future__ import annotations

import itertools
from datetime import UTC, date, datetime, timedelta

import pytest

from src.core.errors import ErrorKind, InvalidInputError
from src.core.mastery import (
    InteractionOutcome,
    MasteryCalculator,
    MasteryConfig,
    MasteryLevel,
    MasteryRecord,
    ReviewSchedule,
    calculate_days_since,
)

NOW = datetime(2024, 1, 1, 9, 0, tzinfo=UTC)


def outcomes(*credits, hints=()):
    return [
        InteractionOutcome(credit=c, hint_count=1 if i in hints else 0, timestamp=NOW)
        for i, c in enumerate(credits)
    ]


class TestMasteryLevel:
    def test_advance_moves_one_stage(self):
        assert MasteryLevel.NOVICE.advance() is MasteryLevel.DEVELOPING
        assert MasteryLevel.DEVELOPING.advance() is MasteryLevel.PROFICIENT
        assert MasteryLevel.PROFICIENT.advance() is MasteryLevel.MASTERED

    def test_bounds_are_sticky(self):
        assert MasteryLevel.MASTERED.advance() is MasteryLevel.MASTERED
        assert MasteryLevel.NOVICE.regress() is MasteryLevel.NOVICE

    def test_regress_moves_one_stage(self):
        assert MasteryLevel.MASTERED.regress() is MasteryLevel.PROFICIENT

    def test_at_least(self):
        assert MasteryLevel.MASTERED.at_least(MasteryLevel.PROFICIENT)
        assert not MasteryLevel.DEVELOPING.at_least(MasteryLevel.PROFICIENT)


class TestInteractionOutcome:
    def test_bool_credit_is_converted(self):
        assert InteractionOutcome(credit=True).credit == 1.0
        assert InteractionOutcome(credit=False).credit == 0.0

    def test_partial_credit_threshold(self):
        assert InteractionOutcome(credit=0.5).is_correct
        assert not InteractionOutcome(credit=0.49).is_correct

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"credit": 1.2},
            {"credit": -0.1},
            {"credit": "abc"},
            {"credit": 1.0, "latency_ms": -5},
            {"credit": 1.0, "hint_count": -1},
        ],
    )
    def test_invalid_values_rejected(self, kwargs):
        with pytest.raises(InvalidInputError) as exc:
            InteractionOutcome(**kwargs)
        assert exc.value.kind is ErrorKind.INVALID_INPUT

    def test_stamped_keeps_explicit_timestamp(self):
        explicit = InteractionOutcome(credit=1.0, timestamp=NOW)
        assert explicit.stamped(NOW + timedelta(days=3)).timestamp == NOW
        assert InteractionOutcome(credit=1.0).stamped(NOW).timestamp == NOW

    def test_naive_timestamp_becomes_utc(self):
        outcome = InteractionOutcome(credit=1.0, timestamp=datetime(2024, 1, 1, 9, 0))
        assert outcome.timestamp.tzinfo is not None


class TestMasteryCalculator:
    """Window of K=5; advance at 80% correct with <=1 hint, regress at 60% incorrect."""

    def setup_method(self):
        self.calc = MasteryCalculator()

    def test_four_correct_advances_novice(self):
        transition = self.calc.evaluate(MasteryLevel.NOVICE, outcomes(1, 1, 1, 1))
        assert transition.current is MasteryLevel.DEVELOPING
        assert transition.advanced

    def test_short_history_cannot_advance(self):
        """Ratios are taken over K, so 3 correct answers are only 60%."""
        transition = self.calc.evaluate(MasteryLevel.NOVICE, outcomes(1, 1, 1))
        assert transition.current is MasteryLevel.NOVICE

    def test_two_hinted_answers_block_advance(self):
        transition = self.calc.evaluate(MasteryLevel.DEVELOPING, outcomes(1, 1, 1, 1, 1, hints=(0, 1)))
        assert transition.current is MasteryLevel.DEVELOPING

    def test_one_hinted_answer_is_allowed(self):
        transition = self.calc.evaluate(MasteryLevel.DEVELOPING, outcomes(1, 1, 1, 1, 1, hints=(2,)))
        assert transition.current is MasteryLevel.PROFICIENT

    def test_three_wrong_in_window_regresses(self):
        transition = self.calc.evaluate(MasteryLevel.PROFICIENT, outcomes(1, 1, 0, 0, 0))
        assert transition.current is MasteryLevel.DEVELOPING
        assert transition.regressed

    def test_only_last_k_interactions_count(self):
        history = outcomes(0, 0, 0, 0, 0, 1, 1, 1, 1)
        stats = self.calc.window_stats(history)
        assert stats.observed == 5
        assert stats.correct_credit == pytest.approx(4.0)

    def test_partial_credit_is_neither(self):
        transition = self.calc.evaluate(MasteryLevel.DEVELOPING, outcomes(0.5, 0.5, 0.5, 0.5, 0.5))
        assert transition.current is MasteryLevel.DEVELOPING

    def test_custom_window(self):
        calc = MasteryCalculator(MasteryConfig(window_size=3))
        assert calc.evaluate(MasteryLevel.NOVICE, outcomes(1, 1, 1)).current is MasteryLevel.DEVELOPING

    def test_invalid_config(self):
        with pytest.raises(InvalidInputError):
            MasteryConfig(window_size=0)


class TestRegressionOnlyOnWrongAnswers:
    """Every 0/1 history up to 7 answers, from every starting level."""

    @pytest.mark.parametrize("start", list(MasteryLevel))
    @pytest.mark.parametrize("length", range(1, 8))
    def test_level_drops_only_at_regress_ratio(self, start, length):
        calc = MasteryCalculator()
        for answers in itertools.product((0, 1), repeat=length):
            level = start
            history = []
            for credit in answers:
                history.append(InteractionOutcome(credit=credit, timestamp=NOW))
                transition = calc.evaluate(level, history)
                if transition.current.rank < level.rank:
                    assert transition.stats.incorrect_ratio >= 0.6, (start, answers)
                    assert transition.current is level.regress()
                elif level is not MasteryLevel.NOVICE:
                    assert transition.stats.incorrect_ratio < 0.6, (start, answers)
                level = transition.current


class TestMasteredDays:
    def setup_method(self):
        self.calc = MasteryCalculator()

    def test_same_day_is_not_truly_mastered(self):
        days, truly = self.calc.update_mastered_days((), MasteryLevel.MASTERED, NOW)
        days, truly = self.calc.update_mastered_days(days, MasteryLevel.MASTERED, NOW + timedelta(hours=5))
        assert days == (date(2024, 1, 1),)
        assert truly is False

    def test_second_distinct_day_is_truly_mastered(self):
        days, _ = self.calc.update_mastered_days((), MasteryLevel.MASTERED, NOW)
        days, truly = self.calc.update_mastered_days(days, MasteryLevel.MASTERED, NOW + timedelta(days=1))
        assert truly is True
        assert len(days) == 2

    def test_dropping_below_mastered_clears_days(self):
        days, _ = self.calc.update_mastered_days((), MasteryLevel.MASTERED, NOW)
        days, truly = self.calc.update_mastered_days(days, MasteryLevel.PROFICIENT, NOW + timedelta(days=1))
        assert days == ()
        assert truly is False


class TestReviewSchedule:
    def test_due_from_calendar_day(self):
        schedule = ReviewSchedule.starting(NOW, 1.0)
        assert schedule.next_review_due == NOW + timedelta(days=1)
        # Early morning on the due day already counts
        assert schedule.is_due(datetime(2024, 1, 2, 0, 30, tzinfo=UTC))
        assert not schedule.is_due(datetime(2024, 1, 1, 23, 59, tzinfo=UTC))

    def test_overdue_is_strict(self):
        schedule = ReviewSchedule.starting(NOW, 1.0)
        assert not schedule.is_overdue(NOW + timedelta(days=1))
        assert schedule.is_overdue(NOW + timedelta(days=1, seconds=1))


class TestMasteryRecord:
    def test_dict_round_trip_preserves_schedule(self):
        record = MasteryRecord(
            student_id="s1",
            node_id="add",
            interactions=tuple(outcomes(1, 0.5)),
            mastery_level=MasteryLevel.MASTERED,
            truly_mastered=True,
            mastered_days=(date(2024, 1, 1), date(2024, 1, 2)),
            mastered_at=NOW,
            review=ReviewSchedule.starting(NOW, 2.0),
            version=7,
        )
        assert MasteryRecord.from_dict(record.to_dict()) == record

    def test_empty_record(self):
        record = MasteryRecord.empty("s1", "add")
        assert record.version == 0
        assert record.last_interaction_at is None
        assert not record.is_scheduled


class TestCalculateDaysSince:
    def test_none(self):
        assert calculate_days_since(None) is None

    def test_naive_input(self):
        assert calculate_days_since(datetime(2024, 1, 1), NOW + timedelta(days=2)) == pytest.approx(2 + 9 / 24)
