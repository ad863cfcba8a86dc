"""HR desk — employee directory and time-off tracking service."""
