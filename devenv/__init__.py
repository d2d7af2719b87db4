"""devenv - reconciles a platform development environment with its descriptor."""

__version__ = "0.3.0"
