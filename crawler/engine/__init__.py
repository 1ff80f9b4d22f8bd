"""Deterministic rules engine: dice, floors, loot, combat and intent.

Nothing in this package talks to the database; loot rules and enemy rules are
looked up by the services layer and passed in. All randomness goes through an
injectable ``rng`` argument.
"""
