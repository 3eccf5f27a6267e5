"""Domain layer: entities, value enums, typed errors. No infrastructure."""
