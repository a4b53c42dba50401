"""
FoxPay Service Test Suite

This package contains all tests for the FoxPay service including:
- Unit tests for the token manager, gateway client and webhook verifier
- Payment session lifecycle tests for the adapter
- Session persistence tests against in-memory SQLite
- HTTP route tests
"""
