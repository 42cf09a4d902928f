"""
FastAPI integration: request dependencies and error rendering
"""
