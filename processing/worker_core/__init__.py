"""Worker-side processing engine: leasing, ingestion, chunk validation and finalization."""
