"""Tickets app package.

Issues one ticket per reserved seat once a booking is confirmed.
"""
