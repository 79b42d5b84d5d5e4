"""Outbound connectors: demo parser, FACEIT, Discord and the Steam Web API."""

from topfrag.integrations.exceptions import (
    ConnectorError,
    DiscordError,
    FaceITError,
    ParserServiceError,
)

__all__ = ["ConnectorError", "DiscordError", "FaceITError", "ParserServiceError"]
