"""
Tests for mission-orchestrator.

helpers.py holds the shared builders and fakes:
- make_mission(): missions with chosen criterion priorities
- FakeLLMClient: scripted oracle replies, keyed by prompt kind
- FakeAgent: scripted coding agent results and failures
"""
