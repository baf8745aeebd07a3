"""School medication scheduling backend."""
