"""research-synth: multi-stage research synthesis and validation pipeline."""

__version__ = "0.1.0"
