# ABOUTME: Tests for sentinel signal parsing
# ABOUTME: Marker rendering and first-match parsing

"""Tests for signals module."""

from ralph_sprint.signals import Signal, marker, parse_signal


def test_marker_form():
    assert marker(Signal.COMPLETE) == "<ralph>COMPLETE</ralph>"


def test_parse_first_signal():
    text = "Done with this one. <ralph>COMPLETE</ralph> then <ralph>EMPTY</ralph>"
    assert parse_signal(text) == Signal.COMPLETE


def test_no_signal():
    assert parse_signal("nothing to see") == Signal.NONE
    assert parse_signal("") == Signal.NONE
    assert parse_signal(None) == Signal.NONE


def test_unknown_or_lowercase_marker_ignored():
    assert parse_signal("<ralph>complete</ralph> <ralph>DONE</ralph>") == Signal.NONE


def test_none_is_falsy():
    assert not Signal.NONE
    assert Signal.EMPTY
