"""
Tests Package - Unit and Integration Tests

Test structure:
- tests/helpers.py - Fake clock, fake transport and settings builders
- tests/conftest.py - Shared pytest fixtures
- tests/test_*.py - One module per component, plus end-to-end export runs

HTTP is mocked with httpx.MockTransport; coroutines are driven with asyncio.run.
"""
