"""
Exceptions raised by the nucleo-cytoplasmic ratio pipeline.

Only ConfigurationError reaches the caller of the pipeline. The others are
raised inside one image's analysis and turned into skip or exclusion
annotations on the result.
"""


class AnalysisError(Exception):
    """Base class for all analysis errors."""


class ConfigurationError(AnalysisError):
    """Invalid channels, channel indices or parameters. Aborts the run."""


class DegenerateImageError(AnalysisError):
    """The nuclear channel has no separable foreground (e.g. a flat image)."""


class EdgeArtifactSkip(AnalysisError):
    """The edge detector flagged the image and the skip policy is enabled."""

    def __init__(self, message, region=None):
        super().__init__(message)
        self.region = region


class ImageQualitySkip(AnalysisError):
    """The image failed a quality gate (standard deviation or mean too high)."""


class MeasurementError(AnalysisError):
    """A region could not be measured. Excludes one object only."""


class EmptyRegionError(MeasurementError):
    """The mean of an empty region was requested."""
