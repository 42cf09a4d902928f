"""
Persistence layer: declarative base, ORM models and session management
"""
