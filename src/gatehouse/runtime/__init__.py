"""Runtime layer: middleware composition, resilience and observability."""
