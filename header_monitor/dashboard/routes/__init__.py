"""Route blueprints for the header monitor API."""
