"""Test helpers shared across unit and integration tests."""

from tests.helpers.fakes import FakeEmbedder
from tests.helpers.rpc import parse_responses, request_line, run_engine

__all__ = ["FakeEmbedder", "parse_responses", "request_line", "run_engine"]
