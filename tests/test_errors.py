"""Tests for the JSON error envelope."""

import json

import pytest

from rbicache.domain.models import ErrorCode
from rbicache.interfaces.http.errors import (
    build_error_response,
    log_and_return_error_response,
)


class TestErrorResponses:
    def test_envelope_shape(self, request_factory):
        response = build_error_response(
            request_factory(path="/api/residents"),
            404,
            ErrorCode.NOT_FOUND,
            "Not Found",
        )

        body = json.loads(response.body)
        assert response.status_code == 404
        assert body["error"] == {"code": "not_found", "message": "Not Found"}
        assert body["path"] == "/api/residents"
        assert body["timestamp"]

    def test_details_and_headers(self, request_factory):
        response = build_error_response(
            request_factory(),
            429,
            ErrorCode.RATE_LIMIT_EXCEEDED,
            "slow down",
            details={"retry_after": 5},
            headers={"Retry-After": "5"},
        )

        assert json.loads(response.body)["error"]["details"] == {"retry_after": 5}
        assert response.headers["Retry-After"] == "5"

    @pytest.mark.anyio
    async def test_log_and_return_error_response(self, request_factory):
        request = request_factory()
        request.state.request_id = "req-9"

        response = await log_and_return_error_response(
            request,
            500,
            ErrorCode.INTERNAL_ERROR,
            "boom",
            caught_exception=RuntimeError("boom"),
        )

        assert response.status_code == 500
        assert json.loads(response.body)["error"]["code"] == "internal_error"
