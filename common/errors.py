class ConfigurationError(RuntimeError):
    """Raised when a component cannot be built from the current settings
    (missing credentials, unknown provider, missing model file)."""
