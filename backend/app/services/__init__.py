"""Services package.

Service modules are imported directly (``from app.services.checkout import
checkout_service``); the database layer depends on the pure pricing and
status modules here, so this package imports nothing eagerly.
"""
