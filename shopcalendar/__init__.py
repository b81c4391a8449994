"""
shopcalendar - Appointment scheduling engine for a seamstress shop.
"""

__version__ = "0.1.0"
