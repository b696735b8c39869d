"""
Schema Migrator - versioned PostgreSQL schema migrations with verification.

Applies numbered SQL migration files exactly once and in order, records them
in a ledger table, validates the resulting schema, and can rehearse the whole
UP/DOWN cycle against a throwaway database.
"""
