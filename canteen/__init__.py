"""Canteen meal-slot ordering core."""
