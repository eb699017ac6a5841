"""Pytest fixtures for emr-assistant tests."""

import os
from typing import List, Optional

import pytest
from fastapi.testclient import TestClient

# Set test environment
os.environ["ENVIRONMENT"] = "testing"
os.environ["LOG_LEVEL"] = "WARNING"
os.environ["LLM_URL"] = "http://mock-llm:8080"
os.environ["APP_BASE_URL"] = "https://clinic.example.com"

BASE_URL = "https://clinic.example.com"

SAMPLE_KNOWLEDGE = """# Knowledge Base

Pages and tasks of the practice management application.

```json
{
  "tenant-1": {
    "knowledge": {
      "where_to_do_what": [
        {"action": "Create appointment", "where": "Appointments page", "url": "/appointments/create"},
        {"action": "Invite patient", "url": "/patients/{id}/invite"}
      ],
      "navigation": {
        "main": [
          {"label": "Dashboard", "url": "/dashboard"},
          {"label": "Patients", "url": "/patients", "children": [{"label": "Patient Intake", "url": "/intake"}]}
        ]
      },
      "/practitioners/create": {"page_title": "Add Practitioner", "module": "practitioners", "description": "Register a new practitioner"},
      "/appointments/{id}/manage": {
        "page_title": "Manage Appointment",
        "module": "appointments",
        "description": "Reschedule or cancel"
      },
      "/patients": {"page_title": "Patients", "description": "List of all patients", "user_actions": ["View patient list", "Add new patient"]}
    }
  }
}
```
"""


class FakeLLM:
    """Stands in for LLMService; never touches the network."""

    def __init__(self, chunks=(), error: Optional[Exception] = None, points: Optional[List[str]] = None):
        self.chunks = list(chunks)
        self.error = error
        self.points = points if points is not None else []
        self.calls = []

    async def stream_response(self, user_prompt, system_prompt, max_tokens=None):
        self.calls.append({"user_prompt": user_prompt, "system_prompt": system_prompt})
        for chunk in self.chunks:
            yield chunk
        if self.error:
            raise self.error

    async def generate_summary(self, context, prompt, system_prompt, max_tokens=None):
        self.calls.append({"context": context, "user_prompt": prompt, "system_prompt": system_prompt})
        if self.error:
            raise self.error
        return self.points

    async def close(self):
        pass


@pytest.fixture
def sample_knowledge():
    """Knowledge document with an embedded tenant JSON object."""
    return SAMPLE_KNOWLEDGE


@pytest.fixture
def knowledge_file(tmp_path, sample_knowledge):
    """Knowledge document written to disk."""
    path = tmp_path / "AI_KNOWLEDGE_BASE.md"
    path.write_text(sample_knowledge, encoding="utf-8")
    return path


@pytest.fixture
def fake_llm():
    """Model client that streams a short answer."""
    return FakeLLM(chunks=["Go to ", "[Add Practitioner](", "https://clinic.example.com/practitioners/create.)", " to start."])


@pytest.fixture
def test_client(fake_llm, knowledge_file):
    """Create test client for FastAPI app with the model and knowledge file swapped out."""
    from emr_assistant.main import app
    from emr_assistant.services.knowledge_base import KnowledgeBaseStore

    with TestClient(app) as client:
        real_llm = app.state.llm_service
        real_store = app.state.knowledge_store
        app.state.llm_service = fake_llm
        app.state.knowledge_store = KnowledgeBaseStore(knowledge_file)
        try:
            yield client
        finally:
            app.state.llm_service = real_llm
            app.state.knowledge_store = real_store
