import pytest

from sfpromoter.errors_catalog import actionable_error


def test_actionable_error_formats_message_with_suggested_action():
    message = actionable_error("coverage_below_threshold", coverage=70.0, threshold=75.0)

    assert "Code coverage 70.00% is below the required minimum of 75.00%." in message
    assert "Suggested action:" in message


def test_actionable_error_rejects_unknown_code():
    with pytest.raises(KeyError):
        actionable_error("no_such_error")
