"""Reference budgeting and upstream request building."""
