"""Collaborative editing sessions and edit locks."""
from blogflow.collaboration.models import CollaborativeSession
from blogflow.collaboration.session_manager import SessionManager

__all__ = ["CollaborativeSession", "SessionManager"]
