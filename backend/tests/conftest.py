"""Shared fixtures for the Grid Assist test suite.

Provides a scripted fake gateway client so the adapters, the engine and the
Flask routes can be exercised without touching the Gemini API.
"""

import sys
import json
from pathlib import Path

import pytest

# Ensure backend is importable
BACKEND_DIR = Path(__file__).resolve().parent.parent
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from grid_engine.data_structures import GenerationResult, ReferenceDocument
from grid_engine.gemini_client import AllModelsExhaustedError
from grid_engine.reconciliation import GridReconciliationEngine


DEFAULT_MODELS = ["gemini-2.0-flash", "gemini-1.5-pro", "gemini-1.5-flash"]


# =============================================================================
# FAKE GATEWAY
# =============================================================================

class FakeClient:
    """Stands in for GeminiClient; replies are consumed in order.

    A reply may be a string (answered by the start model), a GenerationResult
    (to simulate a fallback) or an exception instance to raise.
    """

    def __init__(self, responses=None, models=None):
        self.responses = list(responses or [])
        self.models = list(models or DEFAULT_MODELS)
        self.calls = []

    def queue(self, *responses):
        self.responses.extend(responses)

    async def generate_with_fallback(self, start_model, available_models, system_instruction,
                                     contents, on_retry=None, config=None, tools=None):
        self.calls.append({
            "start_model": start_model,
            "available_models": list(available_models),
            "system_instruction": system_instruction,
            "contents": contents,
            "config": config,
            "tools": tools,
        })
        if not self.responses:
            raise AllModelsExhaustedError([start_model])
        reply = self.responses.pop(0)
        if isinstance(reply, Exception):
            raise reply
        if isinstance(reply, GenerationResult):
            return reply
        return GenerationResult(text=reply, final_model=start_model)

    def list_available_models(self, default_model):
        return sorted(self.models, key=lambda name: 0 if name == default_model else 1)


def extraction_reply(*rows, citation=None):
    """JSON body of an extraction answer with one citation per row"""
    citation = citation or {"type": "spreadsheet", "location": "Row 2", "reasoning": "Found in sheet"}
    return json.dumps({"rows": [{"data": list(row), "citation": citation} for row in rows]})


def chat_reply(text, payload):
    return f"{text}\n```json_update\n{json.dumps(payload)}\n```"


# =============================================================================
# GRID FIXTURES
# =============================================================================

@pytest.fixture
def sample_grid():
    """Header plus two data rows."""
    return [
        ["Part No", "Description", "Qty"],
        ["A-100", "Motor 24V", "2"],
        ["B-200", "Cable 5m", "10"],
    ]


@pytest.fixture
def csv_document():
    return ReferenceDocument(
        name="supplier.csv",
        content=b"Part No,Description,Qty\nC-300,Relay,4\n",
        mime_type="text/csv",
    )


@pytest.fixture
def pdf_document():
    return ReferenceDocument(name="catalog.pdf", content=b"%PDF-1.4 fake", mime_type="application/pdf")


@pytest.fixture
def fake_client():
    return FakeClient()


@pytest.fixture
def engine(fake_client, sample_grid):
    """Engine with the sample grid loaded and the fake client wired in."""
    eng = GridReconciliationEngine(client=fake_client)
    eng.available_models = list(DEFAULT_MODELS)
    eng.load_grid(sample_grid, "parts.xlsx")
    return eng
