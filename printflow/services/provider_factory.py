from __future__ import annotations

from dataclasses import dataclass

from printflow.services.document_extraction_service import DocumentExtractor, RegexDocumentExtractor
from printflow.services.email_service import EmailDispatcher, build_email_dispatcher
from printflow.services.storage_service import LocalObjectStorage, ObjectStorage


@dataclass(frozen=True)
class Collaborators:
    storage: ObjectStorage
    email: EmailDispatcher
    extractor: DocumentExtractor


def build_collaborators(config) -> Collaborators:
    return Collaborators(
        storage=LocalObjectStorage(
            config.storage_root,
            signing_key=config.storage_signing_key,
            base_url=config.public_base_url,
            ttl_seconds=config.storage_url_ttl_seconds,
        ),
        email=build_email_dispatcher(config),
        extractor=RegexDocumentExtractor(),
    )
