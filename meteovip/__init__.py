"""
MeteoVip
========
Weather alert backend for a Telegram Mini App. Watches the hourly forecast
for each user's active location, notifies about dangerous weather once per
occurrence and finds good windows for user plans.
"""

__version__ = "1.0.0"
