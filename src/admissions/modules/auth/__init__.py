"""Staff authentication module."""
