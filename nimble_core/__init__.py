# =============================================================================
# nimble_core/__init__.py
# Nimble Core - application state and local-first storage
# =============================================================================

__version__ = "0.1.0"
