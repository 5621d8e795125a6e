"""Pure domain logic: models, classification, redaction and encoding."""
