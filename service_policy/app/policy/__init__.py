"""
Policy evaluation package.

Modules of interest:
- models: Policy, RequestContext, PolicyRequest and Decision.
- evaluator: The ordered, short-circuiting evaluation algorithm.
- context: Ownership, membership, time window and IP checks.
- registry: Named policies attached to protected operations.
"""
