"""Storefront orders service.

Order aggregate, fulfillment status machine, payment status tracker and the
repository and REST surface around them.
"""

__version__ = "1.0.0"
