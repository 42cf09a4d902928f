"""
Pydantic models and enumerations shared across the access-control engine
"""
