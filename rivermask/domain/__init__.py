"""Pure computation layer. No file I/O, no raster engine calls."""
