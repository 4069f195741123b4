"""Unit tests for the @service_errors decorator."""

import unittest

from fastapi import FastAPI
from fastapi.testclient import TestClient

from sinkmorph.api.error_handling import error_response, service_errors
from sinkmorph.exceptions import (
    ConfigurationError,
    InvalidStateError,
    NotFoundError,
    ServiceError,
    TransientError,
    ValidationError,
)


def _build_app() -> FastAPI:
    app = FastAPI()

    @app.get("/ok")
    @service_errors
    async def ok():
        return {"status": "ok"}

    @app.get("/not-found")
    @service_errors
    async def not_found():
        raise NotFoundError("job missing")

    @app.get("/not-found-rich")
    @service_errors
    async def not_found_rich():
        raise NotFoundError(
            "job 3f2a does not exist",
            error_code="JOB_NOT_FOUND",
            context={"job_id": "3f2a"},
        )

    @app.get("/invalid-state")
    @service_errors
    async def invalid_state():
        raise InvalidStateError("already finished")

    @app.get("/service-error")
    @service_errors
    async def service_error():
        raise ServiceError("generic problem")

    @app.get("/validation-error")
    @service_errors
    async def validation_error():
        raise ValidationError(
            "source has 30000 points, limit is 20000",
            error_code="TOO_MANY_POINTS",
            context={"field": "source", "points": 30000},
        )

    @app.get("/transient-error")
    @service_errors
    async def transient_error():
        raise TransientError(
            "solve queue is full",
            error_code="QUEUE_FULL",
            retry_after=10,
        )

    @app.get("/config-error")
    @service_errors
    async def config_error():
        raise ConfigurationError("compute backend unavailable")

    @app.get("/unhandled")
    @service_errors
    async def unhandled():
        raise ValueError("unexpected")

    return app


class ServiceErrorsDecoratorTests(unittest.TestCase):
    def setUp(self) -> None:
        self.client = TestClient(_build_app())

    def test_success_passes_through(self) -> None:
        resp = self.client.get("/ok")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json(), {"status": "ok"})

    def test_not_found_returns_404(self) -> None:
        resp = self.client.get("/not-found")
        self.assertEqual(resp.status_code, 404)
        body = resp.json()["error"]
        self.assertEqual(body["code"], "NOT_FOUND")
        self.assertIn("job missing", body["message"])
        self.assertEqual(body["details"], {})

    def test_not_found_rich_returns_404_with_context(self) -> None:
        resp = self.client.get("/not-found-rich")
        self.assertEqual(resp.status_code, 404)
        body = resp.json()["error"]
        self.assertEqual(body["code"], "JOB_NOT_FOUND")
        self.assertEqual(body["details"], {"job_id": "3f2a"})

    def test_invalid_state_returns_409(self) -> None:
        resp = self.client.get("/invalid-state")
        self.assertEqual(resp.status_code, 409)
        self.assertEqual(resp.json()["error"]["code"], "INVALID_STATE")

    def test_service_error_returns_400(self) -> None:
        resp = self.client.get("/service-error")
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json()["error"]["code"], "SERVICE_ERROR")

    def test_validation_error_returns_422(self) -> None:
        resp = self.client.get("/validation-error")
        self.assertEqual(resp.status_code, 422)
        body = resp.json()["error"]
        self.assertEqual(body["code"], "TOO_MANY_POINTS")
        self.assertEqual(body["details"]["points"], 30000)

    def test_transient_error_returns_503_with_retry_after(self) -> None:
        resp = self.client.get("/transient-error")
        self.assertEqual(resp.status_code, 503)
        self.assertEqual(resp.headers["Retry-After"], "10")
        self.assertEqual(resp.json()["error"]["code"], "QUEUE_FULL")

    def test_configuration_error_returns_500(self) -> None:
        resp = self.client.get("/config-error")
        self.assertEqual(resp.status_code, 500)
        body = resp.json()["error"]
        self.assertEqual(body["code"], "CONFIGURATION_ERROR")
        self.assertIn("compute backend unavailable", body["message"])

    def test_unhandled_error_returns_500_catchall(self) -> None:
        resp = self.client.get("/unhandled")
        self.assertEqual(resp.status_code, 500)
        body = resp.json()["error"]
        self.assertEqual(body["code"], "INTERNAL_ERROR")
        self.assertNotIn("ValueError", body["message"])
        self.assertNotIn("unexpected\n", body["message"])

    def test_error_response_envelope_structure(self) -> None:
        for path in ["/not-found", "/invalid-state", "/service-error",
                     "/validation-error", "/transient-error",
                     "/config-error", "/unhandled"]:
            resp = self.client.get(path)
            err = resp.json()["error"]
            self.assertIsInstance(err["code"], str, path)
            self.assertIsInstance(err["message"], str, path)
            self.assertIsInstance(err["details"], dict, path)

    def test_error_response_helper(self) -> None:
        resp = error_response(TransientError("busy", retry_after=3))
        self.assertEqual(resp.status_code, 503)
        self.assertEqual(resp.headers["Retry-After"], "3")


if __name__ == "__main__":
    unittest.main()
