"""FastAPI application module for AffinityRec.

This module contains the FastAPI application, route handlers and the
ambient HTTP concerns (structured logging, metrics, error rendering) of the
recommendation service.
"""
