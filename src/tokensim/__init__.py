"""tokensim: discrete-time token-flow simulation with full lineage."""

__version__ = "0.1.0"
