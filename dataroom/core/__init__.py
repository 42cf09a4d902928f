"""
Core access-control components
"""
