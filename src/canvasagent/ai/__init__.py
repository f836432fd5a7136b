"""AI layer: model client, operation catalog, summarizer and orchestration."""
