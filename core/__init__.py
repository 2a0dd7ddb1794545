"""Core module - domain models, configuration and shared infrastructure.

This module contains the canonical data models, error types, observability,
audit, artifact storage and identity components shared by the fulfillment
pipeline. It is intentionally independent of any persistence technology
or presentation layer.
"""

__version__ = "1.0.0"
