"""Pipeline coordination: resolve, build or reuse, assemble, hand off."""
