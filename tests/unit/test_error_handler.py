"""
Tests for error handler middleware and custom exceptions.
"""
from datetime import datetime
from uuid import uuid4

import pytest
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.testclient import TestClient
from pydantic import BaseModel, Field
from starlette.exceptions import HTTPException as StarletteHTTPException

from booking_engine.api.middleware.error_handler import (
    app_exception_handler,
    http_exception_handler,
    unhandled_exception_handler,
    validation_exception_handler,
)
from booking_engine.lib.errors import (
    AppException,
    DuplicateActiveBookingError,
    InvalidTransitionError,
    NotFoundException,
    SlotUnavailableError,
    StoreTimeoutError,
    StoreUnavailableError,
    ValidationException,
    WriteOutcomeUnknownError,
)
from booking_engine.models.bookings import Booking, BookingStatus


@pytest.mark.unit
def test_not_found_exception():
    exc = NotFoundException("Booking", "123")

    assert exc.message == "Booking with id '123' not found"
    assert exc.status_code == 404
    assert exc.code == "not_found"
    assert exc.details == {"resource": "Booking", "resource_id": "123"}


@pytest.mark.unit
def test_validation_exception_wraps_field_errors():
    exc = ValidationException("Invalid", errors={"rating": "must be between 1 and 5"})

    assert exc.status_code == 422
    assert exc.details == {"errors": {"rating": "must be between 1 and 5"}}


@pytest.mark.unit
def test_duplicate_booking_carries_existing_booking():
    booking = Booking(
        id=uuid4(),
        start_time=datetime(2030, 1, 15, 10),
        end_time=datetime(2030, 1, 15, 11),
        status=BookingStatus.PENDING,
    )

    exc = DuplicateActiveBookingError(booking)

    assert exc.status_code == 409
    assert exc.code == "duplicate_active_booking"
    assert exc.details["booking_id"] == str(booking.id)
    assert exc.details["status"] == "pending"


@pytest.mark.unit
def test_conflict_codes_are_distinct():
    codes = {
        InvalidTransitionError(uuid4(), BookingStatus.CANCELLED, "confirmed").code,
        SlotUnavailableError(datetime(2030, 1, 15, 10)).code,
        DuplicateActiveBookingError().code,
    }

    assert codes == {"invalid_transition", "slot_unavailable", "duplicate_active_booking"}


@pytest.mark.unit
def test_store_errors_are_service_unavailable():
    timeout = StoreTimeoutError("list_bookings", 2.5)
    unknown = WriteOutcomeUnknownError("insert_booking")

    assert isinstance(timeout, StoreUnavailableError)
    assert timeout.status_code == 503
    assert timeout.details["timeout_seconds"] == 2.5
    assert unknown.status_code == 503
    assert unknown.details["retryable"] is False


@pytest.fixture
def error_app():
    app = FastAPI()
    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    class Payload(BaseModel):
        rating: int = Field(..., ge=1, le=5)

    @app.get("/missing")
    def missing():
        raise NotFoundException("Booking", "b-1")

    @app.get("/timeout")
    def timeout():
        raise StoreTimeoutError("list_bookings", 1)

    @app.post("/validate")
    def validate(payload: Payload):
        return payload

    @app.get("/boom")
    def boom():
        raise RuntimeError("unexpected")

    return app


@pytest.mark.unit
def test_app_exception_rendered_with_code(error_app):
    client = TestClient(error_app)

    response = client.get("/missing")

    assert response.status_code == 404
    body = response.json()
    assert body["code"] == "not_found"
    assert body["error"] == "Booking with id 'b-1' not found"
    assert body["correlation_id"] == "unknown"
    assert body["details"]["resource_id"] == "b-1"


@pytest.mark.unit
def test_store_timeout_rendered_as_503(error_app):
    response = TestClient(error_app).get("/timeout")

    assert response.status_code == 503
    assert response.json()["code"] == "store_timeout"


@pytest.mark.unit
def test_request_validation_rendered(error_app):
    response = TestClient(error_app).post("/validate", json={"rating": 9})

    assert response.status_code == 422
    body = response.json()
    assert body["code"] == "validation_error"
    assert body["details"]["errors"][0]["loc"] == ["body", "rating"]


@pytest.mark.unit
def test_unknown_route_rendered(error_app):
    response = TestClient(error_app).get("/nope")

    assert response.status_code == 404
    assert response.json()["code"] == "http_error"


@pytest.mark.unit
def test_unhandled_exception_hides_details(error_app):
    client = TestClient(error_app, raise_server_exceptions=False)

    response = client.get("/boom")

    assert response.status_code == 500
    assert response.json()["error"] == "Internal server error"
    assert response.json()["code"] == "internal_error"
