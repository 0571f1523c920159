"""Workflows that bridge the raster engine, export sinks and domain math."""
