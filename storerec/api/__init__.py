"""FastAPI application module for StoreRec.

This module contains the FastAPI application, route handlers, logging and
metrics for the recommendation service. The HTTP layer is thin: every
endpoint delegates to the recommendation service façade.
"""
