"""
RestQL persistence layer on top of SQLAlchemy
"""
