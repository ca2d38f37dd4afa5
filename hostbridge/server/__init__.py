"""HTTP endpoint for the command broker."""
