"""Token Filter Pipeline - LLM-gated token screening over BirdEye market data."""

__version__ = "0.1.0"
