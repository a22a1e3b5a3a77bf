"""
Billing — credit cost per intent and monthly quota accounting.
"""
