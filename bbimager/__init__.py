"""Parse BeagleBoard image lists, download and cache images, and flash SD cards and co-processors."""

__version__ = "0.0.16"