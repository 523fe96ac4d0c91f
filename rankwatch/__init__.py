"""
rankwatch – periodic harvesting of ranked fiction listings with
time-budgeted batch runs and rank-movement diffing.
"""

__version__ = "0.1.0"
