"""
TopFrag - Counter-Strike demo statistics API

Stores the events an external demo parser sends back, tracks the processing
job for each demo and derives per-match statistics from the stored rows:
player complexion (opener, closer, support, fragger), aim and utility
summaries, clan leaderboards and head-to-head comparisons.

Usage:
    uvicorn topfrag.api:app
    topfrag serve --port 8000
"""

__version__ = "0.1.0"
__author__ = "TopFrag Contributors"
