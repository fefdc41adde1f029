"""
Storefront catalog API with semantic product search.
"""
__version__ = "1.0.0"
