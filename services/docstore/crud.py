"""
CRUD (Create, Read, Update, Delete) operations for the document store.

This module contains all database operations for document collections.
"""
import uuid
from typing import Any, Dict, List, Optional
from sqlalchemy import delete as sqla_delete, update
from sqlalchemy.orm import Session
from . import models


class VersionMismatch(Exception):
    """Raised when an If-Match precondition does not hold."""

    def __init__(self, expected: int, actual: Optional[int]):
        super().__init__(f"Version mismatch: expected {expected}, found {actual}")
        self.expected = expected
        self.actual = actual


class DuplicateDocument(Exception):
    """Raised when creating a document whose id is already taken."""


def _lookup(data: Dict[str, Any], path: str) -> Any:
    """Resolve a dotted path such as ``customerInfo.email`` inside a document."""
    value: Any = data
    for part in path.split("."):
        if not isinstance(value, dict) or part not in value:
            return None
        value = value[part]
    return value


def _matches(value: Any, expected: str) -> bool:
    """
    Compare a stored value against a query-string value.

    Query strings carry no types, so booleans and null are compared in their
    JSON spelling and numbers numerically.
    """
    if isinstance(value, bool):
        return expected.lower() == ("true" if value else "false")
    if value is None:
        return expected == "null"
    if isinstance(value, (int, float)):
        try:
            return float(expected) == float(value)
        except ValueError:
            return False
    return str(value) == expected


def get_document(db: Session, collection: str, doc_id: str) -> Optional[models.Document]:
    """
    Retrieve a single document by collection and id.

    Args:
        db: Database session
        collection: Collection name
        doc_id: Document id

    Returns:
        Document object or None if not found
    """
    return db.query(models.Document).filter(
        models.Document.collection == collection,
        models.Document.doc_id == str(doc_id),
    ).first()


def list_documents(db: Session, collection: str, filters: Optional[Dict[str, str]] = None) -> List[models.Document]:
    """
    Retrieve every document of a collection matching all equality filters.

    Args:
        db: Database session
        collection: Collection name
        filters: Field (or dotted path) to expected value, compared as strings

    Returns:
        List of Document objects in insertion order
    """
    documents = db.query(models.Document).filter(
        models.Document.collection == collection
    ).order_by(models.Document.pk).all()
    if not filters:
        return documents

    result = []
    for document in documents:
        body = document.to_dict()
        if all(_matches(_lookup(body, key), value) for key, value in filters.items()):
            result.append(document)
    return result


def create_document(db: Session, collection: str, data: Dict[str, Any]) -> models.Document:
    """
    Create a new document. The id is taken from the body when present,
    otherwise one is generated.

    Raises:
        DuplicateDocument: if the id already exists in the collection
    """
    body = dict(data)
    doc_id = body.pop("id", None)
    doc_id = str(doc_id) if doc_id is not None else uuid.uuid4().hex[:12]

    if get_document(db, collection, doc_id) is not None:
        raise DuplicateDocument(f"{collection}/{doc_id} already exists")

    db_document = models.Document(collection=collection, doc_id=doc_id, data=body, version=1)
    db.add(db_document)
    db.commit()
    db.refresh(db_document)
    return db_document


def _stale(db: Session, collection: str, doc_id: str, if_match: Optional[int]) -> VersionMismatch:
    """Roll back a write that matched no row and describe the version actually stored."""
    db.rollback()
    current = get_document(db, collection, doc_id)
    return VersionMismatch(if_match, current.version if current else None)


def _write(
    db: Session,
    db_document: models.Document,
    body: Dict[str, Any],
    if_match: Optional[int],
) -> Optional[models.Document]:
    """
    Store a new body and bump the version in a single UPDATE.

    The If-Match version is part of the WHERE clause, so a writer that lost a
    race against another commit updates no row and gets VersionMismatch.
    """
    collection, doc_id = db_document.collection, db_document.doc_id
    statement = update(models.Document).where(models.Document.pk == db_document.pk)
    if if_match is not None:
        statement = statement.where(models.Document.version == if_match)
    statement = statement.values(data=body, version=models.Document.version + 1)

    result = db.execute(statement.execution_options(synchronize_session=False))
    if result.rowcount == 0:
        if if_match is not None:
            raise _stale(db, collection, doc_id, if_match)
        # Deleted since it was read
        db.rollback()
        return None
    db.commit()
    return get_document(db, collection, doc_id)


def replace_document(
    db: Session,
    collection: str,
    doc_id: str,
    data: Dict[str, Any],
    if_match: Optional[int] = None,
) -> Optional[models.Document]:
    """
    Replace a document body entirely.

    Returns:
        Updated Document object or None if not found

    Raises:
        VersionMismatch: if ``if_match`` is not the stored version when the write lands
    """
    db_document = get_document(db, collection, doc_id)
    if db_document is None:
        return None
    if if_match is not None and db_document.version != if_match:
        raise VersionMismatch(if_match, db_document.version)

    body = dict(data)
    body.pop("id", None)
    return _write(db, db_document, body, if_match)


def patch_document(
    db: Session,
    collection: str,
    doc_id: str,
    data: Dict[str, Any],
    if_match: Optional[int] = None,
) -> Optional[models.Document]:
    """
    Shallow-merge fields into a document (only provided fields are updated).

    Returns:
        Updated Document object or None if not found

    Raises:
        VersionMismatch: if ``if_match`` is not the stored version when the write lands
    """
    db_document = get_document(db, collection, doc_id)
    if db_document is None:
        return None
    if if_match is not None and db_document.version != if_match:
        raise VersionMismatch(if_match, db_document.version)

    update_data = dict(data)
    update_data.pop("id", None)
    return _write(db, db_document, {**(db_document.data or {}), **update_data}, if_match)


def delete_document(db: Session, collection: str, doc_id: str, if_match: Optional[int] = None) -> bool:
    """
    Delete a document.

    Returns:
        True if the document was deleted, False if not found

    Raises:
        VersionMismatch: if ``if_match`` is not the stored version when the delete lands
    """
    db_document = get_document(db, collection, doc_id)
    if db_document is None:
        return False
    if if_match is not None and db_document.version != if_match:
        raise VersionMismatch(if_match, db_document.version)

    statement = sqla_delete(models.Document).where(models.Document.pk == db_document.pk)
    if if_match is not None:
        statement = statement.where(models.Document.version == if_match)
    result = db.execute(statement.execution_options(synchronize_session=False))
    if result.rowcount == 0:
        if if_match is not None:
            raise _stale(db, collection, doc_id, if_match)
        db.rollback()
        return False
    db.commit()
    return True
