"""
Store interfaces and adapters.

The evaluator only consumes the small query protocols in ``base``. The
in-memory adapters back tests and local mode; the PostgreSQL adapters query
a schema owned by the account services.
"""
