"""Delivery dispatch, store proximity and delivery fee service."""
