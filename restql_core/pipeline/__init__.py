"""
RestQL write pipeline: index resolution, soft-delete reconciliation,
conflict translation, write orchestration and association query rewriting
"""
