"""Test package for geo-maps-agents.

This package contains:
- Unit tests (test_scoring.py, test_spatial.py, test_routing.py)
- Integration tests (test_integration.py)
- Mock API fixtures (fixtures/)
- Test configuration (conftest.py)
"""
