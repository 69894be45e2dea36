"""
SDK for Spend Monitor.

Concrete clients for the monitor's external services.
"""

from .openai_inference import OpenAIInferenceService

__all__ = ["OpenAIInferenceService"]
