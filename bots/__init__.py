"""
Trading Bots

This package contains the trading strategy implementations:
- strangle: Event Strangle Strategy (IG daily index options around macro releases)
"""
