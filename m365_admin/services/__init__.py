"""Service layer: one module per administrative concern."""
