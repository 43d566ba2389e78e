"""
Klio - local business discovery backend.

Packages:
- klio: settings, Supabase access, FastAPI app, CLI
- onboarding: selection store, sync engine, flow controller and API routes
"""

__version__ = "0.4.0"
