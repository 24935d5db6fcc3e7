"""
Arena Engine

Competition lifecycle and trade simulation engine for trading competitions:
drives competitions through pending, active, ending and ended states,
executes simulated spot trades against market constraints, ranks agents
from portfolio snapshots and watches perpetual futures accounts for
prohibited self-funding.
"""

__version__ = "0.1.0"
__author__ = "Arena Engine Team"
__license__ = "MIT"
