"""Resilient avatar image acquisition."""
