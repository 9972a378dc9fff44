"""Document visibility policy for retrieval."""

import logging

from docqa.models import Requester
from docqa.store import InMemoryStore

logger = logging.getLogger(__name__)


def accessible_document_ids(requester: Requester, store: InMemoryStore) -> frozenset[str]:
    """Ids of the documents ``requester`` may retrieve passages from.

    Admins and auditors see every document. Everyone else sees their own
    documents plus documents explicitly flagged as shareable.
    """
    if requester.is_elevated:
        return store.document_ids()
    return store.visible_document_ids(requester.id)
