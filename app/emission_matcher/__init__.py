"""Emission factor matching for purchase records via Azure OpenAI."""

__version__ = "0.1.0"
