"""Environment wiring and lifecycle simulation."""
