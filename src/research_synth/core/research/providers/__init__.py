"""Evidence providers for the research pipeline.

Submodules are imported directly (``providers.perplexity``,
``providers.arxiv``, ``providers.context7``); the resilience package is
also used by the LLM providers, so nothing is re-exported here.
"""
