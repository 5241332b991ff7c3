"""
Cache package for the Policy Decision Service.

Memoizes permission answers, permission lists, plans and principals with a
TTL. Role and plan changes invalidate entries explicitly so answers never
wait for expiry to reflect a revocation.
"""
