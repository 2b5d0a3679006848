"""
Caller authentication
"""
