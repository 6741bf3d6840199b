"""Database management module for the GoldLoan engine."""
import json
import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime

import pandas as pd

from goldloan.config import DATETIME_FORMAT_STORAGE
from goldloan.data_structures import (
    Address,
    CollateralItem,
    Document,
    LoanRecord,
    OutsourceEntity,
    Payment,
    Picture,
)
from goldloan.exceptions import ConcurrentModificationError, TransactionError

logger = logging.getLogger(__name__)

# Scalar LoanRecord attributes stored one-to-one as columns of ``loans``
LOAN_FIELDS = (
    'loan_code', 'applicant_name', 'applicant_phone', 'applicant_email',
    'loan_amount', 'net_weight', 'gross_weight', 'gold_purity', 'interest_rate',
    'loan_term', 'account', 'notes', 'status', 'application_date', 'approval_date',
    'approved_by', 'disbursement_date', 'status_changed_at', 'status_changed_by',
    'due_date', 'submitted_by', 'monthly_emi', 'total_interest', 'total_amount',
    'total_net_weight', 'total_gross_weight', 'outsourced_to', 'outsource_entity',
    'outsource_date', 'outsource_amount', 'outsource_interest_rate', 'profit_margin',
    'outsource_notes', 'closed_at', 'closed_by', 'closure_reason', 'closure_notes',
    'final_amount', 'is_active', 'created_at', 'updated_at',
)

ADDRESS_FIELDS = ('street', 'city', 'state', 'zip_code', 'country')

ENTITY_FIELDS = (
    'name', 'type', 'contact_person', 'phone', 'email', 'address', 'interest_rate',
    'max_loan_amount', 'status', 'created_by', 'notes', 'created_at', 'updated_at',
)

DOCUMENT_FIELDS = (
    'filename', 'original_name', 'file_path', 'file_size', 'mime_type', 'document_type',
    'loan_id', 'uploaded_by', 'description', 'is_verified', 'verified_by',
    'verification_date', 'verification_notes', 'is_active', 'tags', 'created_at',
)

DATETIME_FIELDS = frozenset({
    'application_date', 'approval_date', 'disbursement_date', 'status_changed_at',
    'due_date', 'outsource_date', 'closed_at', 'created_at', 'updated_at',
    'payment_date', 'uploaded_at', 'verification_date',
})

BOOL_FIELDS = frozenset({'is_active', 'is_verified'})


def _to_db(name, value):
    if value is None:
        return None
    if name in DATETIME_FIELDS:
        return value.strftime(DATETIME_FORMAT_STORAGE)
    if name in BOOL_FIELDS:
        return int(bool(value))
    if name == 'tags':
        return json.dumps(value)
    return value


def _from_db(name, value):
    if value is None:
        return None
    if name in DATETIME_FIELDS:
        return datetime.strptime(value, DATETIME_FORMAT_STORAGE)
    if name in BOOL_FIELDS:
        return bool(value)
    if name == 'tags':
        return json.loads(value)
    return value


class DatabaseManager:
    """Handles all SQLite operations for loans, entities and documents."""

    def __init__(self, db_name="gold_loans.db"):
        self.db_name = db_name
        self.conn = sqlite3.connect(db_name)
        self.conn.execute("PRAGMA foreign_keys = ON")
        self._closed = False
        self._transaction_depth = 0
        self.create_tables()

    def close(self):
        """Close the database connection."""
        if self.conn and not self._closed:
            self.conn.close()
            self._closed = True

    def __del__(self):
        self.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    @contextmanager
    def transaction(self):
        """Group writes so they commit together or not at all.

        Usage:
            with db.transaction():
                db.insert_document(doc)
                db.link_document(loan_id, doc.id)

        Nested blocks join the outermost one. If any exception occurs the
        whole transaction is rolled back.
        """
        self._transaction_depth += 1
        try:
            yield
            self._transaction_depth -= 1
            if self._transaction_depth == 0:
                self.conn.commit()
        except sqlite3.Error as e:
            self._transaction_depth -= 1
            if self._transaction_depth == 0:
                self.conn.rollback()
            raise TransactionError(f"Transaction failed: {str(e)}")
        except Exception:
            self._transaction_depth -= 1
            if self._transaction_depth == 0:
                self.conn.rollback()
            raise

    def _commit(self):
        if self._transaction_depth == 0:
            self.conn.commit()

    def create_tables(self):
        cursor = self.conn.cursor()
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS loans (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                loan_code TEXT NOT NULL UNIQUE,
                applicant_name TEXT NOT NULL,
                applicant_phone TEXT NOT NULL,
                applicant_email TEXT,
                street TEXT,
                city TEXT,
                state TEXT,
                zip_code TEXT,
                country TEXT,
                has_address INTEGER DEFAULT 0,
                loan_amount REAL NOT NULL,
                net_weight REAL NOT NULL,
                gross_weight REAL NOT NULL,
                gold_purity TEXT,
                interest_rate REAL,
                loan_term INTEGER,
                account TEXT,
                notes TEXT,
                status TEXT NOT NULL,
                application_date TEXT,
                approval_date TEXT,
                approved_by INTEGER,
                disbursement_date TEXT,
                status_changed_at TEXT,
                status_changed_by INTEGER,
                due_date TEXT,
                submitted_by INTEGER NOT NULL,
                monthly_emi REAL DEFAULT 0,
                total_interest REAL DEFAULT 0,
                total_amount REAL DEFAULT 0,
                total_net_weight REAL DEFAULT 0,
                total_gross_weight REAL DEFAULT 0,
                outsourced_to INTEGER,
                outsource_entity TEXT,
                outsource_date TEXT,
                outsource_amount REAL,
                outsource_interest_rate REAL,
                profit_margin REAL,
                outsource_notes TEXT,
                closed_at TEXT,
                closed_by INTEGER,
                closure_reason TEXT,
                closure_notes TEXT,
                final_amount REAL,
                is_active INTEGER DEFAULT 1,
                version INTEGER DEFAULT 0,
                created_at TEXT,
                updated_at TEXT,
                FOREIGN KEY(outsourced_to) REFERENCES outsource_entities(id)
            )
        """)
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_loans_status ON loans(status, application_date)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_loans_account ON loans(account, status)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_loans_submitted_by ON loans(submitted_by, status)")

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS collateral_items (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                loan_id INTEGER NOT NULL,
                position INTEGER NOT NULL,
                name TEXT NOT NULL,
                item_type TEXT,
                net_weight REAL,
                gross_weight REAL,
                purity TEXT,
                estimated_value REAL,
                description TEXT,
                FOREIGN KEY(loan_id) REFERENCES loans(id) ON DELETE CASCADE
            )
        """)
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS collateral_pictures (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                item_id INTEGER NOT NULL,
                filename TEXT,
                original_name TEXT,
                mime_type TEXT,
                size INTEGER,
                uploaded_at TEXT,
                FOREIGN KEY(item_id) REFERENCES collateral_items(id) ON DELETE CASCADE
            )
        """)
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS payments (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                loan_id INTEGER NOT NULL,
                month INTEGER NOT NULL,
                amount REAL NOT NULL,
                payment_date TEXT,
                payment_method TEXT,
                received_by INTEGER,
                notes TEXT,
                UNIQUE(loan_id, month),
                FOREIGN KEY(loan_id) REFERENCES loans(id)
            )
        """)
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS outsource_entities (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL,
                type TEXT,
                contact_person TEXT,
                phone TEXT,
                email TEXT,
                address TEXT,
                interest_rate REAL,
                max_loan_amount REAL,
                status TEXT DEFAULT 'active',
                created_by INTEGER,
                notes TEXT,
                created_at TEXT,
                updated_at TEXT
            )
        """)
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS documents (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                filename TEXT NOT NULL,
                original_name TEXT,
                file_path TEXT,
                file_size INTEGER,
                mime_type TEXT,
                document_type TEXT,
                loan_id INTEGER,
                uploaded_by INTEGER,
                description TEXT,
                is_verified INTEGER DEFAULT 0,
                verified_by INTEGER,
                verification_date TEXT,
                verification_notes TEXT,
                is_active INTEGER DEFAULT 1,
                tags TEXT,
                created_at TEXT
            )
        """)
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS loan_documents (
                loan_id INTEGER NOT NULL,
                document_id INTEGER NOT NULL,
                PRIMARY KEY(loan_id, document_id),
                FOREIGN KEY(loan_id) REFERENCES loans(id),
                FOREIGN KEY(document_id) REFERENCES documents(id)
            )
        """)
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS settings (
                key TEXT PRIMARY KEY,
                value TEXT
            )
        """)
        self.conn.commit()

    # Row helpers
    def _fetch_one(self, query, params=()):
        cursor = self.conn.cursor()
        cursor.execute(query, params)
        row = cursor.fetchone()
        if row:
            cols = [description[0] for description in cursor.description]
            return dict(zip(cols, row))
        return None

    def _fetch_all(self, query, params=()):
        cursor = self.conn.cursor()
        cursor.execute(query, params)
        cols = [description[0] for description in cursor.description]
        return [dict(zip(cols, row)) for row in cursor.fetchall()]

    # Loan operations
    def _loan_columns(self, loan):
        values = {name: _to_db(name, getattr(loan, name)) for name in LOAN_FIELDS}
        address = loan.applicant_address
        values['has_address'] = int(address is not None)
        for name in ADDRESS_FIELDS:
            values[name] = getattr(address, name) if address else None
        return values

    def insert_loan(self, loan):
        """Insert a loan with its collateral items. Returns the new row id."""
        values = self._loan_columns(loan)
        values['version'] = loan.version
        cols = ', '.join(values)
        marks = ', '.join('?' for _ in values)
        cursor = self.conn.cursor()
        cursor.execute(f"INSERT INTO loans ({cols}) VALUES ({marks})", tuple(values.values()))
        loan.id = cursor.lastrowid
        self._insert_collateral_items(loan.id, loan.collateral_items)
        self._commit()
        return loan.id

    def update_loan(self, loan):
        """Write all scalar fields of a loan if its version is unchanged.

        Raises:
            ConcurrentModificationError: If another write bumped the version
                since ``loan`` was read.
        """
        values = self._loan_columns(loan)
        set_clauses = ', '.join(f"{name}=?" for name in values)
        params = list(values.values()) + [loan.id, loan.version]

        cursor = self.conn.cursor()
        cursor.execute(
            f"UPDATE loans SET {set_clauses}, version=version+1 WHERE id=? AND version=?",
            tuple(params)
        )
        if cursor.rowcount == 0:
            raise ConcurrentModificationError(loan.id, loan.version)
        loan.version += 1
        self._commit()

    def replace_collateral_items(self, loan_id, items):
        cursor = self.conn.cursor()
        cursor.execute("DELETE FROM collateral_items WHERE loan_id=?", (loan_id,))
        self._insert_collateral_items(loan_id, items)
        self._commit()

    def _insert_collateral_items(self, loan_id, items):
        cursor = self.conn.cursor()
        for position, item in enumerate(items):
            cursor.execute("""
                INSERT INTO collateral_items (
                    loan_id, position, name, item_type, net_weight, gross_weight,
                    purity, estimated_value, description
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (loan_id, position, item.name, item.item_type, item.net_weight,
                  item.gross_weight, item.purity, item.estimated_value, item.description))
            item.id = cursor.lastrowid
            for picture in item.pictures:
                cursor.execute("""
                    INSERT INTO collateral_pictures (item_id, filename, original_name, mime_type, size, uploaded_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                """, (item.id, picture.filename, picture.original_name, picture.mime_type,
                      picture.size, _to_db('uploaded_at', picture.uploaded_at)))

    def add_payment(self, loan_id, payment):
        """Append a payment. Existing payments are never updated."""
        cursor = self.conn.cursor()
        cursor.execute("""
            INSERT INTO payments (loan_id, month, amount, payment_date, payment_method, received_by, notes)
            VALUES (?, ?, ?, ?, ?, ?, ?)
        """, (loan_id, payment.month, payment.amount, _to_db('payment_date', payment.payment_date),
              payment.payment_method, payment.received_by, payment.notes))
        payment.id = cursor.lastrowid
        self._commit()
        return payment.id

    def loan_code_exists(self, loan_code):
        cursor = self.conn.cursor()
        cursor.execute("SELECT 1 FROM loans WHERE loan_code=?", (loan_code,))
        return cursor.fetchone() is not None

    def get_loan(self, loan_id):
        row = self._fetch_one("SELECT * FROM loans WHERE id=?", (loan_id,))
        return self._row_to_loan(row) if row else None

    def get_loan_by_code(self, loan_code):
        row = self._fetch_one("SELECT * FROM loans WHERE loan_code=?", (loan_code,))
        return self._row_to_loan(row) if row else None

    def _row_to_loan(self, row):
        kwargs = {name: _from_db(name, row[name]) for name in LOAN_FIELDS}
        if row['has_address']:
            kwargs['applicant_address'] = Address(**{name: row[name] or "" for name in ADDRESS_FIELDS})
        kwargs['notes'] = kwargs['notes'] or ""
        loan = LoanRecord(id=row['id'], version=row['version'], **kwargs)
        loan.collateral_items = self.get_collateral_items(loan.id)
        loan.payments = self.get_payments(loan.id)
        loan.documents = self.get_loan_document_ids(loan.id)
        return loan

    def get_collateral_items(self, loan_id):
        rows = self._fetch_all(
            "SELECT * FROM collateral_items WHERE loan_id=? ORDER BY position", (loan_id,)
        )
        items = []
        for row in rows:
            pictures = [
                Picture(
                    filename=p['filename'],
                    original_name=p['original_name'] or "",
                    mime_type=p['mime_type'] or "",
                    size=p['size'] or 0,
                    uploaded_at=_from_db('uploaded_at', p['uploaded_at'])
                )
                for p in self._fetch_all(
                    "SELECT * FROM collateral_pictures WHERE item_id=? ORDER BY id", (row['id'],)
                )
            ]
            items.append(CollateralItem(
                id=row['id'],
                name=row['name'],
                item_type=row['item_type'],
                net_weight=row['net_weight'],
                gross_weight=row['gross_weight'],
                purity=row['purity'],
                estimated_value=row['estimated_value'],
                description=row['description'] or "",
                pictures=pictures
            ))
        return items

    def get_payments(self, loan_id):
        rows = self._fetch_all("SELECT * FROM payments WHERE loan_id=? ORDER BY id", (loan_id,))
        return [
            Payment(
                id=row['id'],
                month=row['month'],
                amount=row['amount'],
                payment_date=_from_db('payment_date', row['payment_date']),
                payment_method=row['payment_method'],
                received_by=row['received_by'],
                notes=row['notes'] or ""
            )
            for row in rows
        ]

    def query_loans(self, status=None, account=None, start_date=None, end_date=None, search=None,
                    submitted_by=None, outsourced=None, include_closed=True, include_inactive=False):
        """Return loans matching every given filter, newest application first."""
        query = "SELECT id FROM loans WHERE 1=1"
        params = []

        if not include_inactive:
            query += " AND is_active = 1"
        if status:
            query += " AND status = ?"
            params.append(status)
        if not include_closed:
            query += " AND status != 'closed'"
        if account:
            query += " AND account = ?"
            params.append(account)
        if start_date:
            query += " AND application_date >= ?"
            params.append(_to_db('application_date', start_date))
        if end_date:
            query += " AND application_date <= ?"
            params.append(_to_db('application_date', end_date))
        if submitted_by is not None:
            query += " AND submitted_by = ?"
            params.append(submitted_by)
        if outsourced is True:
            query += " AND outsourced_to IS NOT NULL"
        elif outsourced is False:
            query += " AND outsourced_to IS NULL"
        if search:
            term = f"%{search.lower()}%"
            query += (" AND (LOWER(applicant_name) LIKE ? OR LOWER(IFNULL(applicant_email, '')) LIKE ?"
                      " OR LOWER(loan_code) LIKE ?)")
            params.extend([term, term, term])

        query += " ORDER BY application_date DESC, id DESC"

        cursor = self.conn.cursor()
        cursor.execute(query, tuple(params))
        return [self.get_loan(row[0]) for row in cursor.fetchall()]

    def get_loans_frame(self, submitted_by=None):
        """Active loans as a DataFrame for aggregate reporting."""
        query = """
            SELECT id, status, account, loan_amount, outsourced_to, application_date
            FROM loans WHERE is_active = 1
        """
        params = []
        if submitted_by is not None:
            query += " AND submitted_by = ?"
            params.append(submitted_by)
        df = pd.read_sql_query(query, self.conn, params=tuple(params))
        df['application_date'] = pd.to_datetime(df['application_date'], format=DATETIME_FORMAT_STORAGE)
        return df

    def get_payments_frame(self, submitted_by=None):
        """One row per active loan with its EMI, due date and payment totals."""
        query = """
            SELECT l.id, l.monthly_emi, l.due_date,
                   COUNT(p.id) AS payment_count,
                   IFNULL(SUM(p.amount), 0) AS total_paid
            FROM loans l
            LEFT JOIN payments p ON p.loan_id = l.id
            WHERE l.is_active = 1
        """
        params = []
        if submitted_by is not None:
            query += " AND l.submitted_by = ?"
            params.append(submitted_by)
        query += " GROUP BY l.id"
        df = pd.read_sql_query(query, self.conn, params=tuple(params))
        df['due_date'] = pd.to_datetime(df['due_date'], format=DATETIME_FORMAT_STORAGE)
        return df

    # Outsource entity operations
    def insert_entity(self, entity):
        values = {name: _to_db(name, getattr(entity, name)) for name in ENTITY_FIELDS}
        cols = ', '.join(values)
        marks = ', '.join('?' for _ in values)
        cursor = self.conn.cursor()
        cursor.execute(f"INSERT INTO outsource_entities ({cols}) VALUES ({marks})", tuple(values.values()))
        entity.id = cursor.lastrowid
        self._commit()
        return entity.id

    def update_entity(self, entity):
        values = {name: _to_db(name, getattr(entity, name)) for name in ENTITY_FIELDS}
        set_clauses = ', '.join(f"{name}=?" for name in values)
        cursor = self.conn.cursor()
        cursor.execute(
            f"UPDATE outsource_entities SET {set_clauses} WHERE id=?",
            tuple(values.values()) + (entity.id,)
        )
        self._commit()

    def get_entity(self, entity_id):
        row = self._fetch_one("SELECT * FROM outsource_entities WHERE id=?", (entity_id,))
        if not row:
            return None
        kwargs = {name: _from_db(name, row[name]) for name in ENTITY_FIELDS}
        kwargs['notes'] = kwargs['notes'] or ""
        return OutsourceEntity(id=row['id'], **kwargs)

    def query_entities(self, status=None, entity_type=None, search=None):
        query = "SELECT id FROM outsource_entities WHERE 1=1"
        params = []
        if status:
            query += " AND status = ?"
            params.append(status)
        if entity_type:
            query += " AND type = ?"
            params.append(entity_type)
        if search:
            term = f"%{search.lower()}%"
            query += (" AND (LOWER(name) LIKE ? OR LOWER(contact_person) LIKE ?"
                      " OR phone LIKE ? OR LOWER(email) LIKE ?)")
            params.extend([term, term, term, term])
        query += " ORDER BY created_at DESC, id DESC"
        cursor = self.conn.cursor()
        cursor.execute(query, tuple(params))
        return [self.get_entity(row[0]) for row in cursor.fetchall()]

    # Document operations
    def insert_document(self, document):
        values = {name: _to_db(name, getattr(document, name)) for name in DOCUMENT_FIELDS}
        cols = ', '.join(values)
        marks = ', '.join('?' for _ in values)
        cursor = self.conn.cursor()
        cursor.execute(f"INSERT INTO documents ({cols}) VALUES ({marks})", tuple(values.values()))
        document.id = cursor.lastrowid
        self._commit()
        return document.id

    def update_document(self, document):
        values = {name: _to_db(name, getattr(document, name)) for name in DOCUMENT_FIELDS}
        set_clauses = ', '.join(f"{name}=?" for name in values)
        cursor = self.conn.cursor()
        cursor.execute(
            f"UPDATE documents SET {set_clauses} WHERE id=?",
            tuple(values.values()) + (document.id,)
        )
        self._commit()

    def get_document(self, document_id):
        row = self._fetch_one("SELECT * FROM documents WHERE id=?", (document_id,))
        if not row:
            return None
        kwargs = {name: _from_db(name, row[name]) for name in DOCUMENT_FIELDS}
        kwargs['tags'] = kwargs['tags'] or []
        kwargs['description'] = kwargs['description'] or ""
        kwargs['verification_notes'] = kwargs['verification_notes'] or ""
        return Document(id=row['id'], **kwargs)

    def link_document(self, loan_id, document_id):
        cursor = self.conn.cursor()
        cursor.execute(
            "INSERT OR IGNORE INTO loan_documents (loan_id, document_id) VALUES (?, ?)",
            (loan_id, document_id)
        )
        self._commit()

    def unlink_document(self, loan_id, document_id):
        cursor = self.conn.cursor()
        cursor.execute(
            "DELETE FROM loan_documents WHERE loan_id=? AND document_id=?", (loan_id, document_id)
        )
        self._commit()

    def get_loan_document_ids(self, loan_id):
        cursor = self.conn.cursor()
        cursor.execute(
            "SELECT document_id FROM loan_documents WHERE loan_id=? ORDER BY document_id", (loan_id,)
        )
        return [row[0] for row in cursor.fetchall()]

    def get_orphaned_document_ids(self):
        """Active documents whose owning loan holds no reference to them."""
        cursor = self.conn.cursor()
        cursor.execute("""
            SELECT d.id FROM documents d
            LEFT JOIN loan_documents ld ON ld.document_id = d.id AND ld.loan_id = d.loan_id
            WHERE d.is_active = 1 AND ld.document_id IS NULL
            ORDER BY d.id
        """)
        return [row[0] for row in cursor.fetchall()]

    # Settings
    def get_setting(self, key, default=None):
        cursor = self.conn.cursor()
        cursor.execute("SELECT value FROM settings WHERE key=?", (key,))
        row = cursor.fetchone()
        return row[0] if row else default

    def set_setting(self, key, value):
        cursor = self.conn.cursor()
        cursor.execute("INSERT OR REPLACE INTO settings (key, value) VALUES (?, ?)", (key, str(value)))
        self._commit()
