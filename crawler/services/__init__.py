"""Service layer: persistence queries, progression, character lifecycle and the run loop."""
