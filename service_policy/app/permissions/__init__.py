"""
Permission catalogue and role-based permission resolution.
"""
