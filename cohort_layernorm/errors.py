class LayerNormError(Exception):
    """Base class for layernorm dispatch failures."""


class LayerNormConfigError(LayerNormError, ValueError):
    """Bad strategy id, cohort width, dimensions or buffers. Raised before any launch."""


class LayerNormLaunchError(LayerNormError, RuntimeError):
    """The platform refused the requested launch (e.g. out of resources)."""
