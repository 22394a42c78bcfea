"""REST API for session control and event ingestion."""
