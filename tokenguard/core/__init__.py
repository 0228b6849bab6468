"""Cross-cutting configuration, logging, errors and the Flask binding."""
