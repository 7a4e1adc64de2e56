"""HTTP surface for the marketplace."""
