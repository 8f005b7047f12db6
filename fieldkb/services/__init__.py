"""Knowledge base services: embedding, ingestion, retrieval and routing."""
