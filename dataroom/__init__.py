"""
Data Room Access Control
Authorization and session-gating engine for Virtual Data Rooms
"""

__version__ = "1.0.0"
