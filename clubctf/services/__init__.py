"""Engine services."""
