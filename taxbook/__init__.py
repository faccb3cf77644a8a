"""
TaxBook UAE - Tax computation and financial statement engine.
"""

__version__ = "1.0.0"
