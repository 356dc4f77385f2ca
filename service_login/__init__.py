"""
Login service for the access layer.
"""
