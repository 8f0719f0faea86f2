"""A distributed file store that spreads four mirrored chunks over four servers."""

__version__ = "0.1.0"
__all__ = ["client", "protocol", "server"]