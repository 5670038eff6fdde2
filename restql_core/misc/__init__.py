"""
RestQL miscellaneous helpers
"""
