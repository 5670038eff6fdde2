"""
RestQL core: conflict-aware REST endpoints for relational resources
"""

__version__ = "0.1.0"
