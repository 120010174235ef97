"""Root conftest — shared fixtures for all rowguard tests.

Provides:
- A fresh PolicyStore / AuditSink / PolicyEvaluator per test (no shared registry)
- A store loaded with the bundled master policy
- Cleanup of custom predicates registered by a test
"""

from __future__ import annotations

import pytest

from rowguard.services.policy.audit import AuditSink
from rowguard.services.policy.evaluator import PolicyEvaluator
from rowguard.services.policy.master import MASTER_POLICY
from rowguard.services.policy.predicates import _custom_predicates
from rowguard.services.policy.store import PolicyStore

from tests.helpers.mock_factories import RecordingWriter

# ─────────────────────────────────────────────────────────────────────────────
# Policy engine fixtures
# ─────────────────────────────────────────────────────────────────────────────


@pytest.fixture
def store() -> PolicyStore:
    """Empty store with default diagnostics settings."""
    return PolicyStore()


@pytest.fixture
def writer() -> RecordingWriter:
    return RecordingWriter()


@pytest.fixture
def sink(writer: RecordingWriter) -> AuditSink:
    return AuditSink(capacity=100, writers=[writer])


@pytest.fixture
def evaluator(store: PolicyStore, sink: AuditSink) -> PolicyEvaluator:
    return PolicyEvaluator(store, sink)


@pytest.fixture
def master_store() -> PolicyStore:
    """Store loaded with the bundled master policy."""
    store = PolicyStore()
    store.load_all(MASTER_POLICY)
    return store


@pytest.fixture
def master_evaluator(master_store: PolicyStore, sink: AuditSink) -> PolicyEvaluator:
    return PolicyEvaluator(master_store, sink)


@pytest.fixture(autouse=True)
def restore_custom_predicates():
    """Drop custom predicates a test registered so the catalog stays as the app defines it."""
    before = dict(_custom_predicates)
    yield
    _custom_predicates.clear()
    _custom_predicates.update(before)
