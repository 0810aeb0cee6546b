"""Translation backends and response handling."""
