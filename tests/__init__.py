# credvault Test Suite
"""
Test suite including:
- Unit tests (passwords, TOTP, tokens, stores, config)
- Integration tests (full login flows)
- Security tests (invalid inputs, replay, enumeration)

Run with: pytest
Coverage: coverage run -m pytest && coverage report
"""
