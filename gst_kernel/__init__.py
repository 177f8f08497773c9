"""
GST Ledger Kernel

The financial consistency core of a GST accounting platform:
- Gap-free, year-scoped document numbering under concurrent writers
- Exact decimal payment and advance allocation across documents
- Period locks that freeze filed GST returns
- GST return aggregation with figures frozen at filing
"""

__version__ = "0.1.0"
