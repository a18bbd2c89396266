"""
Amazon main-image service package.

Exposes the finishing pipeline that turns AI-edited product photos into
2000x2000 white-background JPEGs, the FastAPI application serving it, and
the sequential batch worker that drives photos through the service.
"""
