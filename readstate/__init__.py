"""Read state and timeline engine for chat clients."""

__version__ = "0.1.0"
