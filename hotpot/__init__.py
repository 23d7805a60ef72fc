"""
Hotpot: a heating controller for central heating and hot water on a Y-plan
system.
"""

__version__ = "0.1.0"
