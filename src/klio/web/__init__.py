"""Klio HTTP surface (FastAPI)."""
