"""
zklove — privacy-preserving compatibility matching core.

Two profiles prove to each other that they live in the same city and share
interests without revealing either, then unlock details by spending Aura.
"""

__version__ = "0.1.0"
