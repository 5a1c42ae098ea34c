"""Test doubles for applications using the SDK."""
