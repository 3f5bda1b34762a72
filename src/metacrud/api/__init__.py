"""HTTP binding."""
