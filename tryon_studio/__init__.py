"""Try-On Studio: wardrobe, stylist chat and try-on image generation backend."""

__version__ = "0.1.0"
