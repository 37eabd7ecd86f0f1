"""
SettleUp Kernel

Shared-expense bookkeeping primitives:
- Integer minor-unit money with a single decimal conversion point
- Typed expense, settlement and balance records
- Structured JSON logging and a typed error hierarchy
"""

__version__ = "0.1.0"
