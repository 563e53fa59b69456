"""Label an image with a pretrained, frozen classification network."""

__version__ = "0.1.0"
