"""
Vibe Store entitlement and purchase tracking service.
"""
