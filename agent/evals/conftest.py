"""
pytest conftest for the finance agent suite.

Three responsibilities:
1. Points the ledger at a shared in-memory SQLite database and wipes it
   before every test, so tests never touch agent/data/ledger.db.
2. Patches market_data._fetch_json to return None immediately, bypassing
   all live HTTP calls. Market tools therefore fall back to their estimates
   unless a test installs its own payloads.
3. Provides `fake_model`, a scripted stand-in for the Anthropic client so
   the agent loop runs without a network or API key.
"""

import copy
import os
import sys
from types import SimpleNamespace

# Make 'agent/' importable from any working directory
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

# In-memory ledger for the whole run (read on every connection)
os.environ["LEDGER_DB_PATH"] = ":memory:"

import pytest


@pytest.fixture(autouse=True)
def clean_ledger():
    import ledger

    ledger.ledger_clear()
    yield
    ledger.ledger_clear()


@pytest.fixture(autouse=True)
def mock_market_no_network(monkeypatch):
    """Every market source is 'down' unless a test says otherwise."""
    from tools import market_data

    async def _offline(url, params=None):
        return None

    monkeypatch.setattr(market_data, "_fetch_json", _offline)


# ---------------------------------------------------------------------------
# Fake Anthropic client
# ---------------------------------------------------------------------------

def text_response(text: str):
    return SimpleNamespace(
        content=[SimpleNamespace(type="text", text=text)],
        stop_reason="end_turn",
    )


def tool_response(*calls, text: str = ""):
    """calls: (name, input) or (name, input, id) tuples."""
    blocks = []
    if text:
        blocks.append(SimpleNamespace(type="text", text=text))
    for i, call in enumerate(calls):
        name, arguments = call[0], call[1]
        call_id = call[2] if len(call) > 2 else f"toolu_{i:02d}"
        blocks.append(SimpleNamespace(type="tool_use", id=call_id, name=name, input=arguments))
    return SimpleNamespace(content=blocks, stop_reason="tool_use")


class FakeAnthropic:
    """Returns scripted responses in order; exceptions in the script are raised."""

    def __init__(self, responses):
        self.responses = list(responses)
        self.calls: list[dict] = []
        self.messages = self

    async def create(self, **kwargs):
        self.calls.append(copy.deepcopy(kwargs))
        if not self.responses:
            raise AssertionError("model called more times than scripted")
        nxt = self.responses.pop(0)
        if isinstance(nxt, BaseException):
            raise nxt
        return nxt


@pytest.fixture
def fake_model(monkeypatch):
    """
    Usage:
        client = fake_model(tool_response(("add_expense", {...})), text_response("✅ ..."))
    """
    import graph

    def _install(*responses) -> FakeAnthropic:
        client = FakeAnthropic(responses)
        monkeypatch.setattr(graph, "_get_client", lambda: client)
        return client

    return _install
