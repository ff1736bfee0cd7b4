from schoola_billing.core.documents.models import DocumentSequence
from schoola_billing.core.documents.number_generator import (
    DocumentNumberGenerator,
    get_document_number,
)

__all__ = ["DocumentSequence", "DocumentNumberGenerator", "get_document_number"]
