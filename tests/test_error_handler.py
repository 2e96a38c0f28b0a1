from fastapi import FastAPI
from fastapi.testclient import TestClient
from pydantic import BaseModel, Field

from talenthive.error_handler import ErrorHandler, NotFoundError, ValidationFailedError, register_error_handlers
from talenthive.integrations.policy.response_wrappers import IntegrationResponseError


def test_handle_exception_returns_payload():
    eh = ErrorHandler()
    out = eh.handle_exception(Exception("boom"), context={"k": "v"})
    assert out["status"] == "error"
    assert "internal error" in out["message"].lower()
    assert "boom" in out["metadata"]["error"]
    assert out["metadata"]["context"] == {"k": "v"}


def test_handle_app_error_includes_details():
    out = ErrorHandler().handle_app_error(ValidationFailedError({"title": "Title is required"}))
    assert out == {
        "status": "error",
        "message": "Validation failed",
        "details": {"field_errors": {"title": "Title is required"}},
    }
    assert "details" not in ErrorHandler().handle_app_error(NotFoundError("Contract not found"))


class _Payload(BaseModel):
    rating: int = Field(ge=1, le=5)


def _client():
    app = FastAPI()
    register_error_handlers(app)

    @app.get("/missing")
    async def missing():
        raise NotFoundError("Contract not found")

    @app.get("/boom")
    async def boom():
        raise RuntimeError("database exploded")

    @app.get("/processor")
    async def processor():
        raise IntegrationResponseError("Missing required field. Checked keys: id")

    @app.post("/reviews")
    async def review(payload: _Payload):
        return {"rating": payload.rating}

    return TestClient(app, raise_server_exceptions=False)


def test_app_error_uses_its_status():
    resp = _client().get("/missing")
    assert resp.status_code == 404
    assert resp.json() == {"status": "error", "message": "Contract not found"}


def test_unhandled_error_is_500():
    resp = _client().get("/boom")
    assert resp.status_code == 500
    body = resp.json()
    assert body["status"] == "error"
    assert body["metadata"]["context"] == {"path": "/boom", "method": "GET"}


def test_processor_response_error_is_502():
    resp = _client().get("/processor")
    assert resp.status_code == 502
    assert "invalid response" in resp.json()["message"]


def test_request_validation_lists_fields():
    resp = _client().post("/reviews", json={"rating": 9})
    assert resp.status_code == 422
    assert "rating" in resp.json()["details"]["field_errors"]
