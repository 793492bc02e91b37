"""Test suite for subclone-scout.

Test organization:
- fixtures/: Synthetic count data generators and input-file writers
- unit/: Unit tests for individual modules and the end-to-end scenarios

Run tests with:
    pytest tests/
    pytest tests/unit/
    pytest tests/ -v --tb=short
"""
