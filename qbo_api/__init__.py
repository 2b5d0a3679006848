"""
QuickBooks Online API boundary: tokens, paged queries, shape normalization
"""
