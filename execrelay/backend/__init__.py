"""HTTP API, event processing and persistence for execrelay."""
