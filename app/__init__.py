"""CheckLance application package.

This package contains FastAPI routes, services, and utilities for the
CheckLance backend. Subpackages include:
- api: FastAPI route definitions (session flow, payment proxy, health)
- core: configuration, logging and the error taxonomy
- services: media normalizer, payment gate, Stripe/Gemini clients, session machine
- schemas: Pydantic models
- workers: background task runner and housekeeping scheduler
"""

__all__ = [
    "api",
    "core",
    "services",
    "schemas",
    "workers",
]

__version__ = "1.0.0"
