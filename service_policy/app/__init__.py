"""
Policy Decision Service package for the Access Layer.

This package decides whether a principal may perform an operation guarded
by a declarative policy. It provides:

- app.main: API surface for evaluation, permissions, plans, usage and roles.
- app.policy: Policy model, ordered evaluator, context checks and registry.
- app.permissions: Permission catalogue and role-based resolver.
- app.plans: Plan entitlement table and plan/limit/usage resolver.
- app.roles: Role assignment and plan management with cache invalidation.
- app.cache: In-memory and Redis cache layers.
- app.stores: Store protocols with in-memory and PostgreSQL adapters.

Guidelines:
- The evaluator is stateless; durable state lives in the stores.
- Every change to roles or plans invalidates the affected cache entries.
- Keep decisions deterministic and observable (metrics + logs).
"""
