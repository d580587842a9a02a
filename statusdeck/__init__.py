"""StatusDeck: card status polling, live status streaming and webhook alerting."""

__version__ = "0.1.0"
