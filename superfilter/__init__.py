"""superfilter: interruptible superpixel segmentation and region filtering."""

__version__ = "0.1.0"
