"""Error taxonomy. Each error carries the HTTP status its category maps to."""


class ImageServiceError(Exception):
    status_code = 500

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ValidationError(ImageServiceError):
    """Missing or malformed request field."""
    status_code = 400


class UnsupportedFormat(ValidationError):
    """Requested output format is not one of the supported encodings."""


class UnsupportedFileType(ImageServiceError):
    """Upload MIME type or fetched source format is not accepted."""
    status_code = 400


class PayloadTooLarge(ImageServiceError):
    status_code = 413


class DecodeError(ImageServiceError):
    """Input bytes could not be read as an image."""
    status_code = 400


class EncodeError(ImageServiceError):
    """Codec rejected the requested output parameters."""
    status_code = 500


class FetchError(ImageServiceError):
    """Remote source unreachable, too large, or timed out."""
    status_code = 400


class StorageError(ImageServiceError):
    """Artifact could not be written to the temp store."""
    status_code = 500
