"""Inbound provider webhook endpoint."""
