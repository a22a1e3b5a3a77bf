"""
Test doubles for the Lexia data-store collaborators.
"""
