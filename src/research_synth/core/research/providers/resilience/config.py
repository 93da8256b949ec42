"""Provider-specific resilience configurations.

Maps provider names to tuned ProviderResilienceConfig instances and
provides a lookup function with sensible defaults.
"""

from research_synth.core.research.providers.resilience.models import (
    ProviderResilienceConfig,
)

# Provider-specific configurations with tuned defaults
PROVIDER_CONFIGS: dict[str, ProviderResilienceConfig] = {
    "perplexity": ProviderResilienceConfig(
        requests_per_second=1.0,
        burst_limit=3,
        max_retries=2,
        base_delay=1.0,
        max_delay=30.0,
        jitter=0.5,
        circuit_failure_threshold=5,
        circuit_recovery_timeout=30.0,
    ),
    "arxiv": ProviderResilienceConfig(
        # Spacing is enforced by MinIntervalRateLimiter; 429 retries are
        # handled by the provider itself, so no generic retries here.
        requests_per_second=1.0,
        burst_limit=1,
        max_retries=0,
        base_delay=5.0,
        max_delay=15.0,
        jitter=0.0,
        circuit_failure_threshold=5,
        circuit_recovery_timeout=60.0,
    ),
    "context7": ProviderResilienceConfig(
        requests_per_second=2.0,
        burst_limit=4,
        max_retries=1,
        base_delay=1.0,
        max_delay=10.0,
        jitter=0.5,
        circuit_failure_threshold=3,
        circuit_recovery_timeout=60.0,
    ),
    "gemini": ProviderResilienceConfig(
        requests_per_second=5.0,
        burst_limit=10,
        max_retries=1,
        base_delay=2.0,
        max_delay=30.0,
        jitter=0.5,
        circuit_failure_threshold=5,
        circuit_recovery_timeout=30.0,
    ),
    "openai": ProviderResilienceConfig(
        requests_per_second=5.0,
        burst_limit=10,
        max_retries=1,
        base_delay=2.0,
        max_delay=30.0,
        jitter=0.5,
        circuit_failure_threshold=5,
        circuit_recovery_timeout=30.0,
    ),
    "anthropic": ProviderResilienceConfig(
        requests_per_second=5.0,
        burst_limit=10,
        max_retries=1,
        base_delay=2.0,
        max_delay=30.0,
        jitter=0.5,
        circuit_failure_threshold=5,
        circuit_recovery_timeout=30.0,
    ),
}


def get_provider_config(provider_name: str) -> ProviderResilienceConfig:
    """Get resilience configuration for a provider.

    Args:
        provider_name: Name of the provider (e.g., 'perplexity', 'gemini')

    Returns:
        Provider-specific config or default config if provider not found
    """
    return PROVIDER_CONFIGS.get(provider_name, ProviderResilienceConfig())
