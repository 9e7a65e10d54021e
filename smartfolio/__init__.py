"""
SmartFolio - portfolio tracking with revocable share links.

Owners keep portfolios of holdings and cash; a share link grants anyone who
holds it a logged, read-only view valued at live prices, with a cached
AI-written analysis.
"""

__version__ = "1.0.0"
