"""
TopFrag services - match statistics, clans and Discord.

This module contains:
- ingestion: parser callbacks and event batches into the database
- complexion / top_roles: role scores per player
- match_details, head_to_head, utility_analysis, aim_tracking: match views
- grenade_explorer / grenade_favourites: grenade map data
- clans / clan_leaderboards: clan membership, shared matches and rankings
- discord: slash commands and match reports
"""

__all__: list[str] = []
