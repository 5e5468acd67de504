"""Tests for the ORB engine."""
