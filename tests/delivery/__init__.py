"""
Notion delivery test suite.
"""
