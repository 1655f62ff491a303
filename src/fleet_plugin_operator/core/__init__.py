"""Core configuration for the operator."""
