"""Pre-action governance gate for chat agents."""
