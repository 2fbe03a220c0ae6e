"""Staffline — real-time layer of the HR/task workspace.

Notifications, presence and audio/video call signaling: the FastAPI
server that fans events out to every connected tab, and the client core
that decides what the user actually hears and sees.
"""

__version__ = "0.1.0"
