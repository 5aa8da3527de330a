"""Utility helpers for the meetup sync client."""
