"""Test package for outage-polygons.

This package contains:
- Unit tests (test_geometry.py, test_index.py, test_dbscan.py, test_hulls.py,
  test_scoring.py, test_strategy.py, test_legacy.py, test_orchestrator.py)
- HTTP tests (test_actions.py)
- Integration tests (test_integration.py)
- Test configuration (conftest.py)
"""
