"""Copy a container image between Docker registries, layer by layer."""

__version__ = "0.1.0"
