"""Domain records produced by the orchestrators."""
