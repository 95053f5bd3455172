"""Output routing and sinks."""
