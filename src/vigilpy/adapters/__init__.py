"""Adapters connecting the pipeline to stores, transports and frameworks."""
