"""ProjectHub engine — configuration, errors, logging, context and security."""
