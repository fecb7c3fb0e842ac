"""Django apps of the rental settlement engine."""
