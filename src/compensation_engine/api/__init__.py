"""HTTP surface for the compensation engine."""
