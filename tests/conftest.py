"""Pytest configuration and fixtures."""

import json
from collections import deque

import pytest
from fastapi.testclient import TestClient

from docdash.app.config import LLMSettings, PipelineSettings, ServiceConfig, TokenBudget
from docdash.app.llm_client import ModelGateway
from docdash.app.main import app, get_config, get_gateway, get_session_store, get_text_extractor
from docdash.app.sessions import SessionStore


class FakeGateway(ModelGateway):
    """
    ModelGateway that answers from a queue instead of the network.
    Queue items are strings (returned) or exceptions (raised). Prompts are recorded.
    """

    def __init__(self, responses=(), budget=None, api_key="test-key"):
        super().__init__(LLMSettings(api_key=api_key), budget or TokenBudget())
        self.responses = deque(responses)
        self.prompts = []
        self.calls = []

    def complete(self, prompt, max_output_tokens=1000, temperature=0.1):
        self.prompts.append(prompt)
        self.calls.append({"max_output_tokens": max_output_tokens, "temperature": temperature})
        if not self.is_configured:
            return super().complete(prompt, max_output_tokens, temperature)
        if not self.responses:
            raise AssertionError("FakeGateway ran out of canned responses")
        item = self.responses.popleft()
        if isinstance(item, BaseException):
            raise item
        return item


def as_json(obj) -> str:
    return json.dumps(obj)


VERDICT_YES = {
    "hasData": True,
    "confidence": 90,
    "reason": "Quarterly revenue table",
    "insights": ["quarterly revenue", "regional sales"],
    "dataTypes": ["revenue", "dates"],
}

VERDICT_NO = {
    "hasData": False,
    "confidence": 80,
    "reason": "Narrative text without figures",
    "insights": [],
    "dataTypes": [],
}

EXTRACTION = {
    "data": [
        {"quarter": "Q1", "region": "North", "revenue": 50000, "growth": 5.5},
        {"quarter": "Q2", "region": "North", "revenue": 60000, "growth": 7.0},
        {"quarter": "Q3", "region": "South", "revenue": 65000, "growth": 8.5},
        {"quarter": "Q4", "region": "South", "revenue": "70000", "growth": "n/a"},
    ],
    "schema": {
        "measures": [{"name": "revenue", "type": "number"}, {"name": "growth", "type": "number"}],
        "dimensions": [{"name": "quarter", "type": "string"}, {"name": "region", "type": "string"}],
    },
    "metadata": {"totalRecords": 4, "dataSource": "extracted from document", "extractionConfidence": 85},
}

DASHBOARD = {
    "kpis": [
        {"name": "Total Revenue", "calculation": "sum", "column": "revenue", "format": "currency"},
        {"name": "Average Growth", "calculation": "avg", "column": "growth", "format": "percent"},
        {"name": "Quarters", "calculation": "count", "column": "quarter", "format": "number"},
    ],
    "charts": [
        {"title": "Revenue by Quarter", "type": "bar", "measures": ["revenue"], "dimensions": ["quarter"]},
        {"title": "Revenue by Region", "type": "pie", "measures": ["revenue"], "dimensions": ["region"]},
    ],
    "insights": ["Revenue grew every quarter"],
    "summary": "Quarterly revenue performance",
}


@pytest.fixture
def budget():
    return TokenBudget()


@pytest.fixture
def small_budget():
    """A budget small enough that modest test documents must be reduced."""
    return TokenBudget(max_input_tokens=2000, max_prompt_tokens=500, safe_text_limit=500, chunk_overlap=10)


@pytest.fixture
def service_config(budget):
    return ServiceConfig(llm=LLMSettings(api_key="test-key"), budget=budget, pipeline=PipelineSettings(min_records=3))


@pytest.fixture
def fake_gateway_factory(budget):
    def make(*responses, **kwargs):
        kwargs.setdefault("budget", budget)
        return FakeGateway(responses, **kwargs)
    return make


@pytest.fixture
def session_store():
    return SessionStore(ttl_seconds=24 * 60 * 60)


@pytest.fixture
def api(service_config, session_store):
    """
    TestClient wired to an in-memory store, a fake text extractor and a
    replaceable FakeGateway (set `api.fakes["gateway"]` before uploading).
    """
    from docdash.app.schemas import ExtractedDocument

    state = {"gateway": FakeGateway(budget=service_config.budget), "text": "Revenue Q1 $50,000\n" * 5}

    def fake_extractor(file_name, content):
        text = state["text"]
        return ExtractedDocument(text=text, file_name=file_name, file_type=file_name.rsplit(".", 1)[-1].lower(), length=len(text))

    app.dependency_overrides[get_config] = lambda: service_config
    app.dependency_overrides[get_session_store] = lambda: session_store
    app.dependency_overrides[get_gateway] = lambda: state["gateway"]
    app.dependency_overrides[get_text_extractor] = lambda: fake_extractor

    client = TestClient(app)
    client.fakes = state
    client.sessions = session_store
    yield client
    app.dependency_overrides.clear()
