"""Tests for modstage."""
