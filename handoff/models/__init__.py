from handoff.models.base import Base
from handoff.models.event import Event
from handoff.models.upload_token import UploadToken
from handoff.models.uploaded_document import UploadedDocument

__all__ = [
    "Base",
    "Event",
    "UploadToken",
    "UploadedDocument",
]
