import pytest

from idea_refiner.utils.exceptions import (
    INVALID_INPUT_MESSAGE,
    UPSTREAM_UNAVAILABLE,
    InputValidationError,
    UpstreamError,
)


@pytest.mark.parametrize("status", [500, 502, 503, 504, 529])
def test_upstream_server_errors_are_mirrored(status):
    err = UpstreamError(status)
    assert err.status_code == status
    assert err.public_message == UPSTREAM_UNAVAILABLE


@pytest.mark.parametrize("status", [None, 0, 302, 418, 700])
def test_unknown_upstream_status_reads_as_500(status):
    err = UpstreamError(status)
    assert err.status_code == 500
    assert err.public_message == UPSTREAM_UNAVAILABLE


def test_input_validation_error_carries_its_message():
    assert InputValidationError().public_message == INVALID_INPUT_MESSAGE
    err = InputValidationError("Invalid request parameters")
    assert err.status_code == 400
    assert err.public_message == "Invalid request parameters"
