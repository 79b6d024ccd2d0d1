"""Star image localisation: configuration, image reading, morphology, labelling, centroid tracking, file watching and a command server."""

__version__ = "0.0.1"