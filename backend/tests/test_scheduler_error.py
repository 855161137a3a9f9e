from fastapi import FastAPI
from fastapi.testclient import TestClient

from timetabler.core.exceptions import (
    AppError,
    IncompleteScheduleError,
    PersistenceError,
    RepositoryError,
    ResourceNotFoundError,
    SchedulerError,
)
from timetabler.core.middleware import RequestSizeLimitMiddleware, RequestTimingMiddleware
from timetabler.main import app_error_handler


def test_error_status_codes():
    assert SchedulerError("bad").status_code == 400
    assert IncompleteScheduleError("gaps").status_code == 422
    assert RepositoryError("down").status_code == 503
    assert PersistenceError("failed").status_code == 500
    not_found = ResourceNotFoundError("School", "9")
    assert not_found.status_code == 404
    assert not_found.message == "School with id 9 not found"
    assert isinstance(not_found, AppError)


def build_app():
    app = FastAPI()
    app.add_exception_handler(AppError, app_error_handler)
    app.add_middleware(RequestSizeLimitMiddleware, max_bytes=64)
    app.add_middleware(RequestTimingMiddleware)

    @app.post("/fail")
    def fail():
        raise SchedulerError("Nothing to schedule", details={"school_id": 3})

    @app.post("/echo")
    def echo(payload: dict):
        return payload

    return app


def test_app_error_handler_shapes_response():
    client = TestClient(build_app())

    response = client.post("/fail")

    assert response.status_code == 400
    assert response.json() == {"message": "Nothing to schedule", "details": {"school_id": 3}}
    assert "X-Response-Time-Ms" in response.headers


def test_oversized_body_is_rejected():
    client = TestClient(build_app())

    response = client.post("/echo", json={"padding": "x" * 200})

    assert response.status_code == 413
    assert response.json()["details"]["max_bytes"] == 64
