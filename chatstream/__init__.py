"""chatstream: turn a model token stream into chat actions, with provider failover."""

__version__ = "0.1.0"
