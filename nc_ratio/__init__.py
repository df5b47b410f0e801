"""
Nucleo-cytoplasmic ratio analysis for multi-channel fluorescence images.

This package provides tools for:
- Nuclear segmentation from a grayscale channel
- Cytoplasmic ring construction around each nucleus
- Per-cell nuclear and cytoplasmic intensity measurement and their ratio
"""

__version__ = "0.1.0"
