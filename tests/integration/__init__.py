"""
movesmith — integration test package

File: tests/integration/__init__.py

Purpose
- Test package marker file for end-to-end pipeline and CLI contracts.

Functional requirements
- Must not trigger network access; HTTP is served by mock transports.
"""
