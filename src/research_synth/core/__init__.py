"""Core business logic for research-synth."""
