"""Image-processing pipeline for the photography portfolio."""

__version__ = "0.1.0"
