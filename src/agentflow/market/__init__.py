"""Task lifecycle, agent registry and assignment coordination."""
