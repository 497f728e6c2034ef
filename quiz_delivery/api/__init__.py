"""
HTTP API for Notion delivery.
"""
