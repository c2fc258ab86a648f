"""API route modules for StoreRec."""
