"""Outbound text message rate limiting."""
