"""
Exception types shared by the fetch, overlay and rendering modules.
"""


class AcquisitionError(RuntimeError):
    """A basemap service request failed; no partial raster is returned."""


class MissingCRSError(ValueError):
    """Loaded data carries no coordinate reference system and none was assigned."""


class CRSMismatchError(ValueError):
    """A file's embedded CRS disagrees with the CRS the caller asserted."""
