"""Engine, caches and plugin hooks."""
