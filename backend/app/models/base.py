"""
Declarative base for users, strava_tokens, strava_activities and sync_state.
"""

from sqlalchemy.orm import declarative_base

Base = declarative_base()
