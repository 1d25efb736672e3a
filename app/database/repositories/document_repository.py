from dataclasses import asdict
from enum import Enum
from typing import Any

import psycopg
from psycopg import sql
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb

from app.database.connection import get_connection
from app.database.models import StatusEventRecord
from app.documents.exceptions import (
    DocumentError,
    DocumentNotFoundError,
    InvalidTransitionError,
)
from app.documents.models import (
    REVIEW_QUEUE_STATUSES,
    Document,
    DocumentStats,
    DocumentType,
    OcrStatus,
    OwnerKind,
    UploadStatus,
    ValidationDecision,
    ValidationStatus,
)
from app.extraction.models import ExtractionIssue, ExtractionResult
from app.lifecycle.state_machine import Reason, Track, ensure_transition, ocr_may_start
from app.logging.logger import Log

_DOCUMENT_COLUMNS = (
    "id",
    "owner_id",
    "owner_kind",
    "document_type",
    "filename",
    "file_size_bytes",
    "mime_type",
    "storage_path",
    "description",
    "uploaded_by",
    "upload_status",
    "upload_error",
    "upload_retryable",
    "ocr_status",
    "ocr_error",
    "ocr_result_id",
    "validation_status",
    "validation_notes",
    "validated_by",
    "validated_at",
    "uploaded_at",
    "updated_at",
)

_RESULT_COLUMNS = (
    "id",
    "document_id",
    "document_type",
    "provider",
    "model_version",
    "raw_text",
    "extracted_data",
    "field_confidences",
    "warnings",
    "errors",
    "processing_ms",
    "processed_at",
)

_STATUS_COLUMN = {Track.UPLOAD: "upload_status", Track.OCR: "ocr_status"}


def _columns(names: tuple[str, ...], table: str | None = None, prefix: str = "") -> sql.Composable:
    return sql.SQL(", ").join(
        sql.SQL("{} AS {}").format(
            sql.Identifier(table, name) if table else sql.Identifier(name),
            sql.Identifier(f"{prefix}{name}"),
        )
        for name in names
    )


def _db_value(value: object) -> object:
    if isinstance(value, Enum):
        return value.value
    return value


def _to_document(row: dict[str, Any]) -> Document:
    return Document(
        id=row["id"],
        owner_id=row["owner_id"],
        owner_kind=OwnerKind(row["owner_kind"]),
        document_type=DocumentType(row["document_type"]),
        filename=row["filename"],
        file_size_bytes=row["file_size_bytes"],
        mime_type=row["mime_type"],
        uploaded_by=row["uploaded_by"],
        upload_status=UploadStatus(row["upload_status"]),
        ocr_status=OcrStatus(row["ocr_status"]),
        validation_status=ValidationStatus(row["validation_status"]),
        storage_path=row["storage_path"],
        description=row["description"],
        upload_error=row["upload_error"],
        upload_retryable=row["upload_retryable"],
        ocr_error=row["ocr_error"],
        ocr_result_id=row["ocr_result_id"],
        validation_notes=row["validation_notes"],
        validated_by=row["validated_by"],
        validated_at=row["validated_at"],
        uploaded_at=row["uploaded_at"],
        updated_at=row["updated_at"],
    )


def _to_result(row: dict[str, Any], prefix: str = "") -> ExtractionResult:
    return ExtractionResult(
        id=row[f"{prefix}id"],
        document_id=row[f"{prefix}document_id"],
        document_type=DocumentType(row[f"{prefix}document_type"]),
        provider=row[f"{prefix}provider"],
        model_version=row[f"{prefix}model_version"],
        raw_text=row[f"{prefix}raw_text"],
        fields=dict(row[f"{prefix}extracted_data"]),
        field_confidences={
            name: float(score) for name, score in row[f"{prefix}field_confidences"].items()
        },
        warnings=list(row[f"{prefix}warnings"]),
        errors=[ExtractionIssue(**issue) for issue in row[f"{prefix}errors"]],
        processing_ms=row[f"{prefix}processing_ms"],
        processed_at=row[f"{prefix}processed_at"],
    )


class DocumentRepository:
    """Database operations for documents, their OCR results and status events.

    Every status change goes through ``transition``: the move is checked
    against the lifecycle state machine, applied as a compare-and-set on the
    current status and recorded in document_status_events. Methods that take
    a connection join the caller's transaction; the caller commits.
    """

    def create(self, document: Document) -> Document:
        values = {name: _db_value(getattr(document, name)) for name in _DOCUMENT_COLUMNS}
        values.pop("uploaded_at")
        values.pop("updated_at")
        values["supplier_id"] = (
            document.owner_id if document.owner_kind == OwnerKind.SUPPLIER else None
        )
        values["contact_id"] = (
            document.owner_id if document.owner_kind == OwnerKind.CONTACT else None
        )
        query = sql.SQL(
            "INSERT INTO documents ({cols}) VALUES ({placeholders}) RETURNING {returning}"
        ).format(
            cols=sql.SQL(", ").join(sql.Identifier(name) for name in values),
            placeholders=sql.SQL(", ").join([sql.Placeholder()] * len(values)),
            returning=_columns(_DOCUMENT_COLUMNS),
        )
        with get_connection() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute(query, list(values.values()))
                row = cur.fetchone()
            if row is None:
                raise DocumentError(f"Insert of document {document.id} returned no row")
            self._record_event(
                conn, document.id, Track.UPLOAD, None, document.upload_status, Reason.CREATED
            )
            conn.commit()
        Log.info(
            f"Created document {document.id} ({document.document_type}) for {document.owner_id}"
        )
        return _to_document(row)

    def find_by_id(self, document_id: str) -> Document:
        """Find a document by ID.

        Raises:
            DocumentNotFoundError: if no document with this ID exists.
        """
        with get_connection() as conn:
            return self.lock(conn, document_id, for_update=False)

    def lock(
        self, conn: psycopg.Connection[Any], document_id: str, *, for_update: bool = True
    ) -> Document:
        """Read a document inside the caller's transaction, row-locked by default.

        Raises:
            DocumentNotFoundError: if no document with this ID exists.
        """
        query = sql.SQL("SELECT {cols} FROM documents WHERE id = %s {lock}").format(
            cols=_columns(_DOCUMENT_COLUMNS),
            lock=sql.SQL("FOR UPDATE" if for_update else ""),
        )
        with conn.cursor(row_factory=dict_row) as cur:
            cur.execute(query, (document_id,))
            row = cur.fetchone()
        if row is None:
            raise DocumentNotFoundError(f"Document {document_id} not found")
        return _to_document(row)

    def transition(
        self,
        conn: psycopg.Connection[Any],
        document: Document,
        track: Track,
        target: str,
        reason: Reason,
        **changes: object,
    ) -> Document:
        """Move *document* to *target* on *track* and apply *changes* in the same row update.

        Raises:
            InvalidTransitionError: if the move is illegal or the stored status
                no longer matches *document*.
        """
        column = _STATUS_COLUMN[track]
        current = getattr(document, column)
        ensure_transition(track, current, target, reason)

        assignments = {column: target, **changes}
        query = sql.SQL(
            "UPDATE documents SET {sets}, updated_at = NOW() "
            "WHERE id = %s AND {column} = %s RETURNING {cols}"
        ).format(
            sets=sql.SQL(", ").join(
                sql.SQL("{} = %s").format(sql.Identifier(name)) for name in assignments
            ),
            column=sql.Identifier(column),
            cols=_columns(_DOCUMENT_COLUMNS),
        )
        params = [_db_value(value) for value in assignments.values()]
        params += [document.id, _db_value(current)]
        with conn.cursor(row_factory=dict_row) as cur:
            cur.execute(query, params)
            row = cur.fetchone()
        if row is None:
            raise InvalidTransitionError(
                f"Document {document.id} {track} status is no longer {current}"
            )
        self._record_event(conn, document.id, track, current, target, reason)
        Log.info(f"Document {document.id} {track}: {current} -> {target} ({reason})")
        return _to_document(row)

    def start_extraction(self, conn: psycopg.Connection[Any], document_id: str) -> Document:
        """Put the OCR track into ``processing`` for a claimed job.

        A document already in ``processing`` (set by a reprocess request) is
        returned unchanged.

        Raises:
            InvalidTransitionError: if the upload has not completed.
        """
        document = self.lock(conn, document_id)
        if not ocr_may_start(document.upload_status):
            raise InvalidTransitionError(
                f"Document {document_id} upload is {document.upload_status}, OCR cannot start"
            )
        if document.ocr_status == OcrStatus.PROCESSING:
            return document
        return self.transition(
            conn, document, Track.OCR, OcrStatus.PROCESSING, Reason.EXTRACTION_STARTED
        )

    def attach_result(
        self, conn: psycopg.Connection[Any], result: ExtractionResult
    ) -> Document:
        """Store *result* and make it the document's current result."""
        document = self.lock(conn, result.document_id)
        conn.execute(
            """
            INSERT INTO ocr_results
            (id, document_id, document_type, provider, model_version, raw_text,
             extracted_data, field_confidences, overall_confidence, confidence_level,
             requires_review, warnings, errors, processing_ms, processed_at)
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, COALESCE(%s, NOW()))
            """,
            (
                result.id,
                result.document_id,
                _db_value(result.document_type),
                result.provider,
                result.model_version,
                result.raw_text,
                Jsonb(result.fields),
                Jsonb(result.field_confidences),
                result.overall_confidence,
                _db_value(result.confidence_level),
                result.requires_review,
                Jsonb(result.warnings),
                Jsonb([asdict(issue) for issue in result.errors]),
                result.processing_ms,
                result.processed_at,
            ),
        )
        return self.transition(
            conn,
            document,
            Track.OCR,
            OcrStatus.COMPLETED,
            Reason.EXTRACTION_COMPLETED,
            ocr_result_id=result.id,
            ocr_error=None,
        )

    def fail_extraction(
        self,
        conn: psycopg.Connection[Any],
        document_id: str,
        error: str,
        reason: Reason = Reason.EXTRACTION_FAILED,
    ) -> Document:
        """Record an extraction failure; the document keeps no current result."""
        document = self.lock(conn, document_id)
        if document.ocr_status != OcrStatus.PROCESSING:
            Log.warning(
                f"Document {document_id} OCR is {document.ocr_status}, "
                f"not recording failure: {error}"
            )
            return document
        return self.transition(
            conn,
            document,
            Track.OCR,
            OcrStatus.FAILED,
            reason,
            ocr_error=error,
            ocr_result_id=None,
        )

    def fail_stale_uploads(
        self, conn: psycopg.Connection[Any], stale_after_seconds: int
    ) -> list[Document]:
        """Fail uploads left in ``uploading`` longer than *stale_after_seconds*.

        The storage write never reported back, so the upload is marked retryable
        and the document can be uploaded again.
        """
        query = sql.SQL(
            """
            SELECT {cols} FROM documents
            WHERE upload_status = %s
              AND updated_at < NOW() - %s * INTERVAL '1 second'
            ORDER BY updated_at
            FOR UPDATE SKIP LOCKED
            """
        ).format(cols=_columns(_DOCUMENT_COLUMNS))
        with conn.cursor(row_factory=dict_row) as cur:
            cur.execute(query, (UploadStatus.UPLOADING.value, stale_after_seconds))
            rows = cur.fetchall()
        return [
            self.transition(
                conn,
                _to_document(row),
                Track.UPLOAD,
                UploadStatus.FAILED,
                Reason.UPLOAD_FAILED,
                upload_error="Upload did not finish within the time limit",
                upload_retryable=True,
            )
            for row in rows
        ]

    def find_result(self, result_id: str) -> ExtractionResult | None:
        query = sql.SQL("SELECT {cols} FROM ocr_results WHERE id = %s").format(
            cols=_columns(_RESULT_COLUMNS)
        )
        with get_connection() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute(query, (result_id,))
                row = cur.fetchone()
        return None if row is None else _to_result(row)

    def list_results(self, document_id: str) -> list[ExtractionResult]:
        """All results ever produced for a document, oldest first."""
        query = sql.SQL(
            "SELECT {cols} FROM ocr_results WHERE document_id = %s ORDER BY processed_at, id"
        ).format(cols=_columns(_RESULT_COLUMNS))
        with get_connection() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute(query, (document_id,))
                rows = cur.fetchall()
        return [_to_result(row) for row in rows]

    def list_requiring_review(self) -> list[tuple[Document, ExtractionResult]]:
        """Documents whose current result needs a human, lowest confidence first."""
        query = sql.SQL(
            """
            SELECT {doc_cols}, {result_cols}
            FROM documents d
            JOIN ocr_results r ON r.id = d.ocr_result_id
            WHERE r.requires_review
              AND d.validation_status = ANY(%s)
            ORDER BY r.overall_confidence ASC, d.uploaded_at ASC
            """
        ).format(
            doc_cols=_columns(_DOCUMENT_COLUMNS, table="d"),
            result_cols=_columns(_RESULT_COLUMNS, table="r", prefix="r_"),
        )
        statuses = sorted(str(status) for status in REVIEW_QUEUE_STATUSES)
        with get_connection() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute(query, (statuses,))
                rows = cur.fetchall()
        return [(_to_document(row), _to_result(row, prefix="r_")) for row in rows]

    def update_validation(
        self,
        document_id: str,
        status: ValidationStatus,
        reviewer: str,
        notes: str | None = None,
    ) -> Document:
        with get_connection() as conn:
            document = self._apply_validation(conn, document_id, status, reviewer, notes)
            conn.commit()
        return document

    def update_validations(self, decisions: list[ValidationDecision]) -> list[Document]:
        """Apply every decision in one transaction.

        Raises:
            DocumentNotFoundError: if any document is unknown; nothing is changed.
        """
        with get_connection() as conn:
            documents = [
                self._apply_validation(
                    conn,
                    decision.document_id,
                    ValidationStatus(decision.status),
                    decision.reviewer,
                    decision.notes,
                )
                for decision in decisions
            ]
            conn.commit()
        return documents

    def submit_for_review(self, document_ids: list[str]) -> list[Document]:
        """Move ``not_reviewed`` documents to ``under_review``.

        Documents already under review or decided are returned unchanged.

        Raises:
            DocumentNotFoundError: if any id is unknown; nothing is changed.
        """
        ids = list(dict.fromkeys(document_ids))
        select = sql.SQL("SELECT {cols} FROM documents WHERE id = ANY(%s) FOR UPDATE").format(
            cols=_columns(_DOCUMENT_COLUMNS)
        )
        with get_connection() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute(select, (ids,))
                found = {row["id"] for row in cur.fetchall()}
                missing = [document_id for document_id in ids if document_id not in found]
                if missing:
                    raise DocumentNotFoundError(f"Documents not found: {', '.join(missing)}")
                cur.execute(
                    """
                    UPDATE documents
                    SET validation_status = %s, updated_at = NOW()
                    WHERE id = ANY(%s) AND validation_status = %s
                    """,
                    (
                        ValidationStatus.UNDER_REVIEW.value,
                        ids,
                        ValidationStatus.NOT_REVIEWED.value,
                    ),
                )
                moved = cur.rowcount
                cur.execute(select, (ids,))
                rows = cur.fetchall()
            conn.commit()
        Log.info(f"Submitted {moved} of {len(ids)} documents for review")
        by_id = {row["id"]: _to_document(row) for row in rows}
        return [by_id[document_id] for document_id in ids]

    def stats(self) -> DocumentStats:
        with get_connection() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute(
                    """
                    SELECT validation_status, document_type, COUNT(*) AS n
                    FROM documents
                    GROUP BY validation_status, document_type
                    """
                )
                groups = cur.fetchall()
                cur.execute(
                    """
                    SELECT
                        COUNT(*) FILTER (WHERE d.ocr_status = %s) AS ocr_processing,
                        COUNT(*) FILTER (
                            WHERE r.requires_review AND d.validation_status = ANY(%s)
                        ) AS pending_review
                    FROM documents d
                    LEFT JOIN ocr_results r ON r.id = d.ocr_result_id
                    """,
                    (
                        OcrStatus.PROCESSING.value,
                        sorted(str(status) for status in REVIEW_QUEUE_STATUSES),
                    ),
                )
                counters = cur.fetchone()

        by_validation_status = dict.fromkeys(ValidationStatus, 0)
        by_type = dict.fromkeys(DocumentType, 0)
        for group in groups:
            by_validation_status[ValidationStatus(group["validation_status"])] += group["n"]
            by_type[DocumentType(group["document_type"])] += group["n"]
        return DocumentStats(
            total=sum(by_type.values()),
            by_validation_status=by_validation_status,
            by_type=by_type,
            pending_review=counters["pending_review"] if counters else 0,
            ocr_processing=counters["ocr_processing"] if counters else 0,
        )

    @staticmethod
    def _apply_validation(
        conn: psycopg.Connection[Any],
        document_id: str,
        status: ValidationStatus,
        reviewer: str,
        notes: str | None,
    ) -> Document:
        query = sql.SQL(
            """
            UPDATE documents
            SET validation_status = %s, validated_by = %s, validation_notes = %s,
                validated_at = NOW(), updated_at = NOW()
            WHERE id = %s
            RETURNING {cols}
            """
        ).format(cols=_columns(_DOCUMENT_COLUMNS))
        with conn.cursor(row_factory=dict_row) as cur:
            cur.execute(query, (_db_value(status), reviewer, notes, document_id))
            row = cur.fetchone()
        if row is None:
            raise DocumentNotFoundError(f"Document {document_id} not found")
        Log.info(f"Document {document_id} validation set to {status} by {reviewer}")
        return _to_document(row)

    def delete(self, document_id: str) -> Document:
        """Delete a document; results, jobs and events go with it."""
        query = sql.SQL("DELETE FROM documents WHERE id = %s RETURNING {cols}").format(
            cols=_columns(_DOCUMENT_COLUMNS)
        )
        with get_connection() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute(query, (document_id,))
                row = cur.fetchone()
            conn.commit()
        if row is None:
            raise DocumentNotFoundError(f"Document {document_id} not found")
        return _to_document(row)

    def list_by_owner(self, owner_id: str) -> list[Document]:
        query = sql.SQL(
            "SELECT {cols} FROM documents WHERE owner_id = %s ORDER BY uploaded_at, id"
        ).format(cols=_columns(_DOCUMENT_COLUMNS))
        with get_connection() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute(query, (owner_id,))
                rows = cur.fetchall()
        return [_to_document(row) for row in rows]

    def list_events(self, document_id: str) -> list[StatusEventRecord]:
        with get_connection() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute(
                    """
                    SELECT document_id, track, from_status, to_status, reason, created_at
                    FROM document_status_events
                    WHERE document_id = %s
                    ORDER BY id
                    """,
                    (document_id,),
                )
                rows = cur.fetchall()
        return [StatusEventRecord(**row) for row in rows]

    @staticmethod
    def _record_event(
        conn: psycopg.Connection[Any],
        document_id: str,
        track: Track,
        from_status: str | None,
        to_status: str,
        reason: Reason,
    ) -> None:
        conn.execute(
            """
            INSERT INTO document_status_events
            (document_id, track, from_status, to_status, reason)
            VALUES (%s, %s, %s, %s, %s)
            """,
            (
                document_id,
                _db_value(track),
                _db_value(from_status),
                _db_value(to_status),
                _db_value(reason),
            ),
        )
