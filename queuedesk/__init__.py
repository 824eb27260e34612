"""Queue engine for appointment check-in and service lines."""
