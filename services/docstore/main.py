"""
Document Store Service API

This module implements a FastAPI-based document store: named collections of
JSON documents with get/list/create/replace/patch/delete semantics and
single-field equality filters, persisted with SQLAlchemy.

The service exposes:
- Collection endpoints: GET/POST /{collection}, GET/PUT/PATCH/DELETE /{collection}/{id}
- Import endpoint: bulk upsert from a db.json style file
- Health endpoint: Provides service health status for monitoring and orchestration

Every document carries a version returned in the ETag header. Writes sent
with an If-Match header only apply when the version still matches, which is
the compare-and-swap primitive used by the storefront's versioned inventory.
There are no transactions and no server-side validation.
"""
import json
from typing import Any, Dict, Optional
from fastapi import FastAPI, Depends, HTTPException, Request, Response, status, UploadFile, File, Body, Header
from sqlalchemy.orm import Session

from . import crud, models
from .database import engine, get_db

# Create database tables
models.Base.metadata.create_all(bind=engine)

app = FastAPI(title="docstore-service")


def _etag(document: models.Document) -> str:
    return f'"{document.version}"'


def _parse_if_match(if_match: Optional[str]) -> Optional[int]:
    """Parse an If-Match header value into a version number."""
    if if_match is None:
        return None
    raw = if_match.strip()
    if raw.startswith("W/"):
        raw = raw[2:]
    try:
        return int(raw.strip('"'))
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid If-Match header: {if_match}")


def _precondition_failed(e: crud.VersionMismatch) -> HTTPException:
    return HTTPException(status_code=status.HTTP_412_PRECONDITION_FAILED, detail=str(e))


@app.get("/healthz", response_model=dict)
def health():
    """
    Health check endpoint for the document store.

    Returns:
        dict: A dictionary containing the health status of the service.
            - status (str): "healthy" if the service is operational.

    Example:
        GET /healthz
        Response: {"status": "healthy"}
    """
    return {"status": "healthy"}


@app.post("/_import")
def import_documents(
    file: UploadFile = File(...),
    db: Session = Depends(get_db)
):
    """
    Import documents from a db.json style file with upsert logic.

    Expected shape: {"<collection>": [{"id": ..., ...}, ...], ...}
    - Replaces existing documents (matched by collection and id)
    - Creates new documents
    - Returns summary of created/updated/skipped documents

    Args:
        file: JSON file upload
        db: Database session (injected)

    Returns:
        dict: Summary with created_count, updated_count, skipped_count, and errors list
    """
    try:
        payload = json.loads(file.file.read().decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError):
        raise HTTPException(status_code=400, detail="File must be valid JSON")
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Top level must map collection names to lists")

    created_count = 0
    updated_count = 0
    skipped_count = 0
    errors = []

    for collection, documents in payload.items():
        if not isinstance(documents, list):
            errors.append(f"{collection}: expected a list of documents")
            skipped_count += 1
            continue
        for position, document in enumerate(documents):
            if not isinstance(document, dict):
                errors.append(f"{collection}[{position}]: document must be an object")
                skipped_count += 1
                continue

            doc_id = document.get("id")
            existing = crud.get_document(db, collection, doc_id) if doc_id is not None else None
            if existing:
                crud.replace_document(db, collection, doc_id, document)
                updated_count += 1
            else:
                crud.create_document(db, collection, document)
                created_count += 1

    return {
        "created_count": created_count,
        "updated_count": updated_count,
        "skipped_count": skipped_count,
        "errors": errors[:10]  # Return first 10 errors to avoid huge responses
    }


@app.get("/{collection}", response_model=list)
def list_documents(
    collection: str,
    request: Request,
    db: Session = Depends(get_db)
):
    """
    List the documents of a collection.

    Every query parameter is an equality filter; dotted names address nested
    fields (e.g. ``?customerInfo.email=a@b.c``).

    Args:
        collection: Collection name
        request: Incoming request, read for its query parameters

    Returns:
        List of documents
    """
    filters = dict(request.query_params)
    return [document.to_dict() for document in crud.list_documents(db, collection, filters)]


@app.get("/{collection}/{doc_id}", response_model=dict)
def get_document(
    collection: str,
    doc_id: str,
    response: Response,
    db: Session = Depends(get_db)
):
    """
    Get a single document by id.

    Raises:
        HTTPException: 404 if document not found
    """
    db_document = crud.get_document(db, collection, doc_id)
    if db_document is None:
        raise HTTPException(status_code=404, detail="Document not found")
    response.headers["ETag"] = _etag(db_document)
    return db_document.to_dict()


@app.post("/{collection}", response_model=dict, status_code=status.HTTP_201_CREATED)
def create_document(
    collection: str,
    response: Response,
    data: Dict[str, Any] = Body(...),
    db: Session = Depends(get_db)
):
    """
    Create a document; the server assigns an id unless the body carries one.

    Raises:
        HTTPException: 409 if the supplied id already exists
    """
    try:
        db_document = crud.create_document(db, collection, data)
    except crud.DuplicateDocument as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    response.headers["ETag"] = _etag(db_document)
    return db_document.to_dict()


@app.put("/{collection}/{doc_id}", response_model=dict)
def replace_document(
    collection: str,
    doc_id: str,
    response: Response,
    data: Dict[str, Any] = Body(...),
    if_match: Optional[str] = Header(None),
    db: Session = Depends(get_db)
):
    """
    Replace a document entirely.

    Raises:
        HTTPException: 404 if document not found
        HTTPException: 412 if If-Match does not match the current version
    """
    try:
        db_document = crud.replace_document(db, collection, doc_id, data, _parse_if_match(if_match))
    except crud.VersionMismatch as e:
        raise _precondition_failed(e)
    if db_document is None:
        raise HTTPException(status_code=404, detail="Document not found")
    response.headers["ETag"] = _etag(db_document)
    return db_document.to_dict()


@app.patch("/{collection}/{doc_id}", response_model=dict)
def patch_document(
    collection: str,
    doc_id: str,
    response: Response,
    data: Dict[str, Any] = Body(...),
    if_match: Optional[str] = Header(None),
    db: Session = Depends(get_db)
):
    """
    Partially update a document (shallow merge of the provided fields).

    Raises:
        HTTPException: 404 if document not found
        HTTPException: 412 if If-Match does not match the current version
    """
    try:
        db_document = crud.patch_document(db, collection, doc_id, data, _parse_if_match(if_match))
    except crud.VersionMismatch as e:
        raise _precondition_failed(e)
    if db_document is None:
        raise HTTPException(status_code=404, detail="Document not found")
    response.headers["ETag"] = _etag(db_document)
    return db_document.to_dict()


@app.delete("/{collection}/{doc_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_document(
    collection: str,
    doc_id: str,
    if_match: Optional[str] = Header(None),
    db: Session = Depends(get_db)
):
    """
    Delete a document.

    Raises:
        HTTPException: 404 if document not found
        HTTPException: 412 if If-Match does not match the current version
    """
    try:
        success = crud.delete_document(db, collection, doc_id, _parse_if_match(if_match))
    except crud.VersionMismatch as e:
        raise _precondition_failed(e)
    if not success:
        raise HTTPException(status_code=404, detail="Document not found")
