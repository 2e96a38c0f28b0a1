"""
TalentHive marketplace backend.

Contracts, milestone escrow payments, disputes, reviews and messaging
served over FastAPI.
"""

__version__ = "1.0.0"
