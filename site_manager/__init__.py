"""Site Manager: construction-site management backend."""

__version__ = "1.0.0"
