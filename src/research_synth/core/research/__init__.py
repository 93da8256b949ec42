"""Research pipeline: models, providers and workflow stages."""
