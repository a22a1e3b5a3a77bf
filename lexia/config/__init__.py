"""
Configuration — YAML overrides for routing tables, credits and classifier tunables.
"""
