"""
Observability module for Lexia.

Structured logging with the request trace_id attached to every record.
"""
