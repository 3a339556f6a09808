"""
Query Layer

HTTP surface over the aggregator state.
"""
