"""Tests for recall.core.time_parser — natural-language time resolution."""

from datetime import datetime, timedelta

import pytest

from recall.core.time_parser import (
    extract_time_from_text,
    format_clock,
    format_reminder_display,
    match_time_expression,
    parse_reminder_time,
)

# Monday 10 March 2025, 10:00
NOW = datetime(2025, 3, 10, 10, 0)


# ---------------------------------------------------------------------------
# Relative offsets
# ---------------------------------------------------------------------------


class TestRelativeOffsets:
    def test_in_minutes(self):
        result = extract_time_from_text("remind me in 30 minutes", now=NOW)
        assert result.has_time is True
        assert result.reminder_info.date == NOW + timedelta(minutes=30)
        assert result.reminder_info.display_text == "In 30 minutes"
        assert result.reminder_info.is_valid is True

    def test_in_five_minutes(self):
        info = parse_reminder_time("in 5 minutes", now=NOW)
        assert abs((info.date - (NOW + timedelta(minutes=5))).total_seconds()) <= 1
        assert info.display_text == "In 5 minutes"

    def test_single_unit_is_not_pluralized(self):
        info = parse_reminder_time("in an hour", now=NOW)
        assert info.date == NOW + timedelta(hours=1)
        assert info.display_text == "In 1 hour"

    def test_half_an_hour(self):
        info = parse_reminder_time("in half an hour", now=NOW)
        assert info.date == NOW + timedelta(minutes=30)
        assert info.display_text == "In 30 minutes"

    def test_from_now(self):
        info = parse_reminder_time("2 days from now", now=NOW)
        assert info.date == NOW + timedelta(days=2)
        assert info.display_text == "In 2 days"

    def test_months_use_calendar_arithmetic(self):
        info = parse_reminder_time("in 1 month", now=NOW)
        assert info.date == datetime(2025, 4, 10, 10, 0)

    def test_relative_wins_over_date_words(self):
        info = parse_reminder_time("in 10 minutes tomorrow", now=NOW)
        assert info.date == NOW + timedelta(minutes=10)

    def test_relative_pattern_matched_first(self):
        match = match_time_expression("call the bank in 2 hours tomorrow")
        assert match.pattern_id == "relative_in"
        assert match.matched == "in 2 hours"

    def test_within_hours(self):
        result = extract_time_from_text("send the invoice within 2 hours", now=NOW)
        assert result.match.pattern_id == "relative_within"
        assert result.reminder_info.date == NOW + timedelta(hours=2)
        assert result.reminder_info.display_text == "In 2 hours"


# ---------------------------------------------------------------------------
# Clock times and day references
# ---------------------------------------------------------------------------


class TestClockTimes:
    def test_noon_later_today(self):
        result = extract_time_from_text("pick up prescription at noon", now=NOW)
        assert result.reminder_info.date == datetime(2025, 3, 10, 12, 0)
        assert result.reminder_info.display_text == "Today at 12 PM"

    def test_noon_already_passed_rolls_to_tomorrow(self):
        afternoon = datetime(2025, 3, 10, 13, 0)
        info = parse_reminder_time("at noon", now=afternoon)
        assert info.date == datetime(2025, 3, 11, 12, 0)
        assert info.display_text == "Tomorrow at 12 PM"

    def test_tomorrow_with_clock(self):
        result = extract_time_from_text("call mom tomorrow at 3pm", now=NOW)
        assert result.time_string == "tomorrow at 3pm"
        assert result.reminder_info.date == datetime(2025, 3, 11, 15, 0)
        assert result.reminder_info.display_text == "Tomorrow at 3 PM"

    def test_clock_without_date_is_low_confidence(self):
        info = parse_reminder_time("at 3pm", now=NOW)
        assert info.date == datetime(2025, 3, 10, 15, 0)
        assert info.display_text == "Today at 3 PM"
        assert info.is_valid is False

    def test_past_clock_without_date_moves_to_tomorrow(self):
        info = parse_reminder_time("at 8am", now=NOW)
        assert info.date == datetime(2025, 3, 11, 8, 0)
        assert info.display_text == "Tomorrow at 8 AM"
        assert info.is_valid is False

    def test_bare_small_hour_is_afternoon(self):
        info = parse_reminder_time("at 5", now=NOW)
        assert info.date == datetime(2025, 3, 10, 17, 0)

    def test_24h_clock(self):
        info = parse_reminder_time("10:30", now=NOW)
        assert info.date == datetime(2025, 3, 10, 10, 30)
        assert info.display_text == "Today at 10:30 AM"

    def test_time_of_day_word(self):
        info = parse_reminder_time("tomorrow afternoon", now=NOW)
        assert info.date == datetime(2025, 3, 11, 14, 0)

    def test_tonight_defaults_to_evening(self):
        info = parse_reminder_time("tonight", now=NOW)
        assert info.date == datetime(2025, 3, 10, 20, 0)
        assert info.display_text == "Tonight at 8 PM"

    def test_tonight_reads_hour_as_pm(self):
        result = extract_time_from_text("movie tonight at 9", now=NOW)
        assert result.reminder_info.date == datetime(2025, 3, 10, 21, 0)
        assert result.reminder_info.display_text == "Tonight at 9 PM"

    def test_tonight_raises_early_evening_to_eight(self):
        info = parse_reminder_time("tonight at 6pm", now=NOW)
        assert info.date == datetime(2025, 3, 10, 20, 0)
        assert info.display_text == "Tonight at 8 PM"

    def test_tonight_after_eight_moves_to_tomorrow(self):
        late = datetime(2025, 3, 10, 23, 0)
        info = parse_reminder_time("tonight", now=late)
        assert info.date == datetime(2025, 3, 11, 20, 0)
        assert info.display_text == "Tomorrow at 8 PM"

    def test_day_after_tomorrow(self):
        info = parse_reminder_time("day after tomorrow at 10am", now=NOW)
        assert info.date == datetime(2025, 3, 12, 10, 0)
        assert info.display_text == "Wednesday at 10 AM"

    def test_end_of_day(self):
        result = extract_time_from_text("report due eod", now=NOW)
        assert result.reminder_info.date == datetime(2025, 3, 10, 17, 0)

    def test_passed_time_today_rolls_to_tomorrow(self):
        info = parse_reminder_time("today at 9am", now=NOW)
        assert info.date == datetime(2025, 3, 11, 9, 0)
        assert info.display_text == "Tomorrow at 9 AM"
        assert info.is_valid is True

    def test_later_today_with_clock(self):
        info = parse_reminder_time("later today at 4pm", now=NOW)
        assert info.date == datetime(2025, 3, 10, 16, 0)
        assert info.display_text == "Today at 4 PM"

    def test_later_today_is_extracted(self):
        match = match_time_expression("call the plumber back later today")
        assert match.pattern_id == "later_today"
        assert match.matched == "later today"

    def test_bare_midnight_is_the_coming_night(self):
        info = parse_reminder_time("midnight", now=NOW)
        assert info.date == datetime(2025, 3, 11, 0, 0)
        assert info.display_text == "Tomorrow at 12 AM"

    @pytest.mark.parametrize(
        "phrase, hour_minute",
        [
            ("quarter past 3", (15, 15)),
            ("quarter to 5", (16, 45)),
            ("half past 11", (11, 30)),
        ],
    )
    def test_quarter_and_half_hours(self, phrase, hour_minute):
        info = parse_reminder_time(phrase, now=NOW)
        assert (info.date.hour, info.date.minute) == hour_minute
        assert info.date.date() == NOW.date()

    def test_half_past_morning_hour_already_gone(self):
        info = parse_reminder_time("half past 7", now=NOW)
        assert info.date == datetime(2025, 3, 11, 7, 30)
        assert info.display_text == "Tomorrow at 7:30 AM"

    def test_oclock(self):
        result = extract_time_from_text("meet at 3 o'clock", now=NOW)
        assert result.match.pattern_id == "clock_oclock"
        assert result.reminder_info.date == datetime(2025, 3, 10, 15, 0)
        assert result.reminder_info.display_text == "Today at 3 PM"

    @pytest.mark.parametrize(
        "phrase, hour",
        [
            ("tomorrow early morning", 6),
            ("tomorrow morning", 9),
            ("tomorrow late morning", 11),
            ("tomorrow early afternoon", 13),
            ("tomorrow late afternoon", 17),
            ("tomorrow early evening", 17),
            ("tomorrow evening", 18),
            ("tomorrow late evening", 21),
        ],
    )
    def test_time_of_day_modifiers(self, phrase, hour):
        info = parse_reminder_time(phrase, now=NOW)
        assert info.date == datetime(2025, 3, 11, hour, 0)


class TestWeekdays:
    def test_bare_weekday_is_strictly_in_the_future(self):
        info = parse_reminder_time("friday", now=NOW)
        assert info.date == datetime(2025, 3, 14, 9, 0)
        assert info.display_text == "Friday at 9 AM"

    def test_same_weekday_means_next_week(self):
        info = parse_reminder_time("monday", now=NOW)
        assert info.date == datetime(2025, 3, 17, 9, 0)

    def test_next_weekday_adds_a_week(self):
        bare = parse_reminder_time("friday", now=NOW)
        prefixed = parse_reminder_time("next friday", now=NOW)
        assert prefixed.date == bare.date + timedelta(days=7)
        assert prefixed.display_text == "Next Friday at 9 AM"

    def test_weekday_with_time(self):
        result = extract_time_from_text("dentist thursday at 4pm", now=NOW)
        assert result.reminder_info.date == datetime(2025, 3, 13, 16, 0)


class TestWeekAndMonthPhrases:
    def test_this_weekend_is_the_coming_saturday(self):
        info = parse_reminder_time("this weekend", now=NOW)
        assert info.date == datetime(2025, 3, 15, 9, 0)
        assert info.display_text == "Saturday at 9 AM"

    def test_this_weekend_on_saturday_morning_is_today(self):
        saturday_morning = datetime(2025, 3, 15, 8, 0)
        info = parse_reminder_time("this weekend", now=saturday_morning)
        assert info.date == datetime(2025, 3, 15, 9, 0)
        assert info.display_text == "Today at 9 AM"

    def test_this_weekend_on_saturday_afternoon_is_next_week(self):
        saturday_afternoon = datetime(2025, 3, 15, 14, 0)
        info = parse_reminder_time("this weekend", now=saturday_afternoon)
        assert info.date > saturday_afternoon
        assert info.date == datetime(2025, 3, 22, 9, 0)
        assert info.display_text == "Mar 22 at 9 AM"

    def test_next_week(self):
        info = parse_reminder_time("next week", now=NOW)
        assert info.date == datetime(2025, 3, 17, 9, 0)
        assert info.display_text == "Mar 17 at 9 AM"

    def test_next_month(self):
        info = parse_reminder_time("next month", now=NOW)
        assert info.date == datetime(2025, 4, 10, 9, 0)
        assert info.display_text == "Apr 10 at 9 AM"

    @pytest.mark.parametrize("phrase", ["eow", "end of week", "end of the week"])
    def test_end_of_week_is_friday_afternoon(self, phrase):
        info = parse_reminder_time(phrase, now=NOW)
        assert info.date == datetime(2025, 3, 14, 17, 0)
        assert info.display_text == "Friday at 5 PM"

    def test_end_of_week_after_friday_deadline(self):
        friday_evening = datetime(2025, 3, 14, 18, 0)
        info = parse_reminder_time("eow", now=friday_evening)
        assert info.date == datetime(2025, 3, 21, 17, 0)

    def test_end_of_week_is_extracted(self):
        result = extract_time_from_text("submit the report by end of week", now=NOW)
        assert result.match.pattern_id == "deadline"
        assert result.reminder_info.date == datetime(2025, 3, 14, 17, 0)


class TestCalendarDates:
    def test_upcoming_date_this_year(self):
        info = parse_reminder_time("march 20", now=NOW)
        assert info.date == datetime(2025, 3, 20, 9, 0)
        assert info.display_text == "Mar 20 at 9 AM"

    def test_passed_date_rolls_to_next_year(self):
        info = parse_reminder_time("feb 1", now=NOW)
        assert info.date == datetime(2026, 2, 1, 9, 0)

    def test_day_of_month(self):
        info = parse_reminder_time("the 25th of december", now=NOW)
        assert info.date == datetime(2025, 12, 25, 9, 0)


# ---------------------------------------------------------------------------
# No time found / formatting
# ---------------------------------------------------------------------------


class TestNoTime:
    def test_plain_text_has_no_time(self):
        result = extract_time_from_text("buy milk", now=NOW)
        assert result.has_time is False
        assert result.reminder_info is None
        assert result.time_string is None

    def test_empty_text(self):
        assert match_time_expression("") is None
        assert extract_time_from_text("", now=NOW).has_time is False


class TestFormatting:
    @pytest.mark.parametrize(
        "hour, minute, expected",
        [(15, 0, "3 PM"), (9, 30, "9:30 AM"), (0, 0, "12 AM"), (12, 5, "12:05 PM")],
    )
    def test_format_clock(self, hour, minute, expected):
        assert format_clock(datetime(2025, 3, 10, hour, minute)) == expected

    def test_format_reminder_display(self):
        assert format_reminder_display(datetime(2025, 3, 11, 15, 0), now=NOW) == "Tomorrow at 3 PM"
        assert format_reminder_display(datetime(2025, 4, 2, 9, 0), now=NOW) == "Apr 2 at 9 AM"
