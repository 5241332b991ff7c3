"""
Role assignment and plan management.
"""
