"""API tests with the evaluator replaced by a stub."""

import pytest
from fastapi.testclient import TestClient

from factoring_review.core.dependencies import get_case_evaluator
from factoring_review.main import app
from factoring_review.pipeline.core.exceptions import ExternalServiceError
from factoring_review.pipeline.models.dto import CaseEvaluation


class StubEvaluator:
    def __init__(self, evaluation=None, error=None):
        self.evaluation = evaluation
        self.error = error
        self.case_ids = []

    async def evaluate(self, case_id, cancel_token=None):
        self.case_ids.append(case_id)
        if self.error is not None:
            raise self.error
        return self.evaluation


@pytest.fixture
def client():
    yield TestClient(app)
    app.dependency_overrides.clear()
    if hasattr(app.state, "case_evaluator"):
        del app.state.case_evaluator


def use(evaluator):
    app.dependency_overrides[get_case_evaluator] = lambda: evaluator
    return evaluator


class TestHealth:
    def test_unhealthy_without_evaluator(self, client):
        response = client.get("/health")

        assert response.status_code == 503
        assert response.json()["evaluator"] == "unavailable"
        assert response.headers["X-Trace-ID"]

    def test_healthy(self, client):
        app.state.case_evaluator = StubEvaluator()
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"


class TestEvaluateCase:
    def test_returns_evaluation(self, client):
        evaluator = use(StubEvaluator(CaseEvaluation(case_id="1001", status="completed")))

        response = client.post("/v1/cases/1001/evaluate")

        assert response.status_code == 200
        assert response.json()["case_id"] == "1001"
        assert response.json()["status"] == "completed"
        assert evaluator.case_ids == ["1001"]

    def test_not_found_is_404_with_report(self, client):
        use(StubEvaluator(CaseEvaluation(case_id="404", status="not_found")))

        response = client.post("/v1/cases/404/evaluate")

        assert response.status_code == 404
        assert response.json()["status"] == "not_found"

    @pytest.mark.parametrize("case_id", ["bad.id", "x" * 65])
    def test_invalid_case_id(self, client, case_id):
        evaluator = use(StubEvaluator())

        response = client.post(f"/v1/cases/{case_id}/evaluate")

        assert response.status_code == 422
        assert response.json()["code"] == "VALIDATION_ERROR"
        assert evaluator.case_ids == []

    def test_evaluator_unavailable(self, client):
        response = client.post("/v1/cases/1001/evaluate")

        assert response.status_code == 503
        body = response.json()
        assert body["code"] == "HTTP_503"
        assert body["retryable"] is True

    def test_provider_error_is_problem_detail(self, client):
        use(StubEvaluator(error=ExternalServiceError("RECORD_STORE", "timeout")))

        response = client.post(
            "/v1/cases/1001/evaluate", headers={"X-Trace-ID": "trace-123"}
        )

        assert response.status_code == 504
        body = response.json()
        assert body["code"] == "RECORD_STORE_TIMEOUT"
        assert body["category"] == "external_service"
        assert body["instance"] == "/v1/cases/1001/evaluate"
        assert body["trace_id"] == "trace-123"
        assert response.headers["X-Trace-ID"] == "trace-123"
