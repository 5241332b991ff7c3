"""
Subscription plans: static entitlement table and the resolver that applies
it to principals (features, limits and usage).
"""
