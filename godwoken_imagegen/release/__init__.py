"""Release assembly, image tagging, smoke checks and handoff."""
