"""Custom exception classes for the fhirmap engine."""


class FhirMapError(Exception):
    """Base class for fhirmap exceptions."""


class ComplexDataError(FhirMapError):
    """Raised when an image cannot be represented as complex data."""


class NonGrayscaleImageError(ComplexDataError):
    """Raised when an image contains a pixel with unequal RGB channels."""


class ImageTooWideError(ComplexDataError):
    """Raised when an image is too wide for the packed size field."""


class ObservationGraphError(FhirMapError):
    """Raised when observation groups or versions form a cycle."""


class RepositoryError(FhirMapError):
    """Raised when a dictionary file cannot be loaded."""
