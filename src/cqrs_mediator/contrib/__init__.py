"""Optional integrations. Each module requires its own extra."""
