"""Integration tests for PolyCopy.

These tests run the PostgreSQL repositories against a real database named
by TEST_DATABASE_URL. Use a disposable database: tables are truncated.
"""
