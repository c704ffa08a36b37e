"""HTTP surface for the gym dashboard."""
