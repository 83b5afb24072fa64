"""Domain layer - entities, value objects and services with no storage dependencies."""
