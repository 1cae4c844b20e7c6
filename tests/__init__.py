"""Tests for the search components.

Unit tests run against the in-memory document store and fake embedders.
Tests marked ``integration`` need a PostgreSQL database with pgvector.
"""
