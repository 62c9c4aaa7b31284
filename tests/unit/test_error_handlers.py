import json
import warnings

import pytest
from starlette.requests import Request

from app.api.errors import STATUS_BY_KIND, scheduling_error_handler
from app.core.exceptions import (
    ConcurrencyConflict,
    NotFound,
    SchedulingConflict,
    ValidationError,
)


def make_request(path="/api/v1/appointments/"):
    return Request({"type": "http", "method": "POST", "path": path, "headers": []})


class TestSchedulingErrorHandler:
    """Test error kinds mapping to HTTP responses."""

    def test_error_module_imports_without_deprecation_warnings(self):
        import importlib

        import app.api.errors as errors

        with warnings.catch_warnings():
            warnings.simplefilter("error", DeprecationWarning)
            importlib.reload(errors)

    def test_status_codes(self):
        assert STATUS_BY_KIND["validation_error"] == 422
        assert STATUS_BY_KIND["not_found"] == 404
        assert STATUS_BY_KIND["scheduling_conflict"] == 409
        assert STATUS_BY_KIND["concurrency_conflict"] == 409

    @pytest.mark.parametrize(
        "error, expected",
        [
            (ValidationError("bad time", {"field": "time"}), 422),
            (NotFound("Appointment", "abc"), 404),
            (SchedulingConflict("busy", {"r1": ["a1"]}, reason="booked"), 409),
            (ConcurrencyConflict("stale"), 409),
        ],
    )
    async def test_handler_renders_error_body(self, error, expected):
        response = await scheduling_error_handler(make_request(), error)

        assert response.status_code == expected
        body = json.loads(response.body)
        assert body["kind"] == error.kind
        assert body["message"] == error.message
