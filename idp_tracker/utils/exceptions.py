class DocumentProcessingError(Exception):
    """Base class for document processing exceptions."""


class ValidationError(DocumentProcessingError):
    pass


class NotFoundError(DocumentProcessingError):
    pass


class AuthenticationError(DocumentProcessingError):
    """Provider credential could not be obtained."""


class UploadError(DocumentProcessingError):
    """Provider rejected the document bytes."""


class ExtractionTriggerError(DocumentProcessingError):
    """Extraction request failed after a successful upload. Non-fatal."""


class WebhookPayloadError(DocumentProcessingError):
    pass


class StoreError(DocumentProcessingError):
    pass


class QueueFullError(DocumentProcessingError):
    pass
