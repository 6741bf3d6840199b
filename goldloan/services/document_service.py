"""Document references for GoldLoan loans.

Files live in an external document store; this service only keeps their
metadata, the loan to document association and the verification flag.
"""
import logging
from datetime import datetime

from goldloan.authorization import AccessPolicy, Action
from goldloan.exceptions import DocumentNotFoundError
from goldloan.services.loan_service import load_loan
from goldloan.validation import ensure_valid, validate_document

logger = logging.getLogger(__name__)


class DocumentService:
    """Attaches, verifies and removes document references on loans."""

    def __init__(self, db_manager, policy=None):
        self.db = db_manager
        self.policy = policy or AccessPolicy()

    def _load_document(self, document_id):
        document = self.db.get_document(document_id)
        if document is None or not document.is_active:
            raise DocumentNotFoundError(document_id)
        return document

    def attach(self, loan_id, actor, document):
        """Store document metadata and reference it from the loan.

        Both writes happen in one transaction so a failure leaves neither
        behind.
        """
        loan = load_loan(self.db, loan_id)
        self.policy.check(actor, Action.DOCUMENT_UPLOAD, loan)

        document.loan_id = loan.id
        document.uploaded_by = actor.id
        document.is_verified = False
        document.is_active = True
        document.created_at = datetime.now()
        ensure_valid(validate_document(document))

        with self.db.transaction():
            self.db.insert_document(document)
            self.db.link_document(loan.id, document.id)

        logger.info("Attached document %s (%s) to loan %s", document.id, document.document_type, loan.loan_code)
        return document

    def list_documents(self, loan_id, actor):
        loan = load_loan(self.db, loan_id)
        self.policy.check(actor, Action.LOAN_VIEW, loan)
        documents = (self.db.get_document(doc_id) for doc_id in loan.documents)
        return [doc for doc in documents if doc is not None and doc.is_active]

    def verify(self, document_id, actor, is_verified=True, notes=None):
        """Record the verification decision made by the document reviewer."""
        document = self._load_document(document_id)
        loan = load_loan(self.db, document.loan_id)
        self.policy.check(actor, Action.DOCUMENT_VERIFY, loan)

        document.is_verified = bool(is_verified)
        if document.is_verified:
            document.verified_by = actor.id
            document.verification_date = datetime.now()
        else:
            document.verified_by = None
            document.verification_date = None
        if notes is not None:
            document.verification_notes = notes

        self.db.update_document(document)
        logger.info("Document %s verification set to %s by actor %s", document.id, document.is_verified, actor.id)
        return document

    def delete(self, document_id, actor):
        """Drop the loan reference and soft-delete the metadata."""
        document = self._load_document(document_id)
        loan = load_loan(self.db, document.loan_id)
        self.policy.check(actor, Action.DOCUMENT_DELETE, loan)

        document.is_active = False
        with self.db.transaction():
            self.db.unlink_document(loan.id, document.id)
            self.db.update_document(document)

        logger.info("Deleted document %s from loan %s", document.id, loan.loan_code)
        return document

    def reconcile(self):
        """Deactivate documents that no loan references.

        Such rows come from writes made outside ``attach`` (imports, manual
        repairs). Returns the ids that were deactivated.
        """
        orphaned = self.db.get_orphaned_document_ids()
        with self.db.transaction():
            for document_id in orphaned:
                document = self.db.get_document(document_id)
                document.is_active = False
                self.db.update_document(document)
        if orphaned:
            logger.warning("Deactivated %d orphaned documents: %s", len(orphaned), orphaned)
        return orphaned
