"""
Database Manager Module - QR Attendance Verifier

This module handles the SQLite connection and schema for the attendance
store. It provides thread-local connections, idempotent schema creation,
query helpers and transaction support. Higher-level read/write rules live
in AttendanceStore and ClassManager.

Features:
- SQLite database connection management
- Schema creation with uniqueness backstops for attendance records
- Query and update helpers returning plain dictionaries
- Transaction support
- System settings key/value access
"""

import logging
import os
import sqlite3
import threading
import uuid
from contextlib import contextmanager

IN_MEMORY = ':memory:'


class DatabaseManager:
    """
    Database management class for the attendance verifier.
    Handles connection management, schema creation and data access with
    error logging and transaction support.
    """

    def __init__(self, db_path):
        """
        Initialize the database manager with the specified database path.

        Args:
            db_path (str): Path to the SQLite database file, or ':memory:'
        """
        self.db_path = str(db_path)
        self.logger = logging.getLogger(__name__)
        self._local = threading.local()
        self._keepalive = None
        self._uri = False

        if self.db_path == IN_MEMORY:
            # Plain :memory: is private to one connection; every thread must see the same database
            self.db_path = f"file:qr_attendance_{uuid.uuid4().hex}?mode=memory&cache=shared"
            self._uri = True
            self._keepalive = self._connect()
        else:
            # Ensure database directory exists
            directory = os.path.dirname(self.db_path)
            if directory:
                os.makedirs(directory, exist_ok=True)

        # Initialize database schema if it doesn't exist
        self.initialize_database()

    def _connect(self):
        connection = sqlite3.connect(
            self.db_path,
            check_same_thread=False,
            timeout=30.0,
            uri=self._uri
        )
        connection.row_factory = sqlite3.Row
        return connection

    @contextmanager
    def get_connection(self):
        """
        Context manager for database connections.
        Provides thread-local connections for thread safety.

        Yields:
            sqlite3.Connection: Database connection object
        """
        if not hasattr(self._local, 'connection'):
            self._local.connection = self._connect()

        try:
            yield self._local.connection
        except sqlite3.IntegrityError:
            # Constraint violations are expected by callers; no error log here
            self._local.connection.rollback()
            raise
        except Exception as e:
            self._local.connection.rollback()
            self.logger.error(f"Database operation failed: {str(e)}")
            raise

    def initialize_database(self):
        """
        Create all necessary tables for the attendance verifier.
        This method is idempotent and can be called multiple times safely.
        """
        try:
            with self.get_connection() as conn:
                cursor = conn.cursor()

                # Class location records (maintained by the admin screens)
                cursor.execute("""
                    CREATE TABLE IF NOT EXISTS classes (
                        id VARCHAR(64) PRIMARY KEY,
                        name VARCHAR(100),
                        latitude REAL,
                        longitude REAL,
                        radius REAL,
                        is_active BOOLEAN DEFAULT 1,
                        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                    )
                """)

                # Attendance records; rows are insert-only
                cursor.execute("""
                    CREATE TABLE IF NOT EXISTS attendance (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        session_id VARCHAR(64) NOT NULL,
                        student_id VARCHAR(64) NOT NULL,
                        class_id VARCHAR(64) NOT NULL,
                        timestamp INTEGER NOT NULL,
                        scan_date DATE NOT NULL,
                        status VARCHAR(20) NOT NULL,
                        latitude REAL NOT NULL,
                        longitude REAL NOT NULL,
                        issued_at INTEGER NOT NULL,
                        minutes_late INTEGER NOT NULL DEFAULT 0,
                        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                        UNIQUE(student_id, session_id),
                        UNIQUE(student_id, class_id, scan_date)
                    )
                """)

                # Create system_settings table
                cursor.execute("""
                    CREATE TABLE IF NOT EXISTS system_settings (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        setting_key VARCHAR(100) UNIQUE NOT NULL,
                        setting_value TEXT,
                        description TEXT,
                        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                    )
                """)

                # Create indexes for the duplicate-guard range queries
                cursor.execute(
                    "CREATE INDEX IF NOT EXISTS idx_attendance_student_class_time "
                    "ON attendance(student_id, class_id, timestamp)"
                )
                cursor.execute("CREATE INDEX IF NOT EXISTS idx_attendance_session ON attendance(session_id)")

                self._insert_default_data(cursor)
                conn.commit()

                self.logger.info("Database initialized successfully")

        except Exception as e:
            self.logger.error(f"Failed to initialize database: {str(e)}")
            raise

    def _insert_default_data(self, cursor):
        """
        Insert default system settings.

        Args:
            cursor: Database cursor object
        """
        cursor.execute("SELECT COUNT(*) FROM system_settings")
        if cursor.fetchone()[0] == 0:
            cursor.execute("""
                INSERT INTO system_settings (setting_key, setting_value, description)
                VALUES (?, ?, ?)
            """, ('system_name', 'QR Attendance Verifier', 'Name of the attendance system'))

    def execute_query(self, query, params=None, fetch_all=True):
        """
        Execute a SELECT query and return results.

        Args:
            query (str): SQL query string
            params (tuple): Query parameters
            fetch_all (bool): Whether to fetch all results or just one

        Returns:
            list or dict: Query results
        """
        try:
            with self.get_connection() as conn:
                cursor = conn.cursor()

                if params:
                    cursor.execute(query, params)
                else:
                    cursor.execute(query)

                if fetch_all:
                    results = cursor.fetchall()
                    return [dict(row) for row in results]
                else:
                    result = cursor.fetchone()
                    return dict(result) if result else None

        except Exception as e:
            self.logger.error(f"Query execution failed: {str(e)}")
            raise

    def execute_update(self, query, params=None):
        """
        Execute an INSERT or UPDATE query.

        Args:
            query (str): SQL query string
            params (tuple): Query parameters

        Returns:
            int: Number of affected rows or last inserted row ID
        """
        with self.get_connection() as conn:
            cursor = conn.cursor()

            if params:
                cursor.execute(query, params)
            else:
                cursor.execute(query)

            conn.commit()

            # Return last inserted row ID for INSERT statements
            if query.strip().upper().startswith('INSERT'):
                return cursor.lastrowid
            else:
                return cursor.rowcount

    @contextmanager
    def transaction(self):
        """
        Context manager for database transactions with automatic rollback on error.

        Yields:
            sqlite3.Connection: Database connection within transaction
        """
        with self.get_connection() as conn:
            yield conn
            conn.commit()

    def get_system_setting(self, key, default_value=None):
        """
        Get a system setting value by key.

        Args:
            key (str): Setting key
            default_value: Default value if setting not found

        Returns:
            str: Setting value
        """
        try:
            result = self.execute_query(
                "SELECT setting_value FROM system_settings WHERE setting_key = ?",
                (key,),
                fetch_all=False
            )
            return result['setting_value'] if result else default_value

        except sqlite3.Error as e:
            self.logger.error(f"Failed to get system setting {key}: {str(e)}")
            return default_value

    def get_system_settings(self):
        """Return all system settings as a key -> value dictionary."""
        rows = self.execute_query("SELECT setting_key, setting_value FROM system_settings")
        return {row['setting_key']: row['setting_value'] for row in rows}

    def update_system_setting(self, key, value, description=None):
        """
        Update or insert a system setting.

        Args:
            key (str): Setting key
            value (str): Setting value
            description (str): Setting description
        """
        with self.transaction() as conn:
            conn.execute("""
                INSERT INTO system_settings (setting_key, setting_value, description)
                VALUES (?, ?, ?)
                ON CONFLICT(setting_key) DO UPDATE SET
                    setting_value = excluded.setting_value,
                    description = COALESCE(excluded.description, description),
                    updated_at = CURRENT_TIMESTAMP
            """, (key, str(value), description))

    def close_all_connections(self):
        """Close the calling thread's database connection."""
        try:
            if hasattr(self._local, 'connection'):
                self._local.connection.close()
                del self._local.connection
        except sqlite3.Error as e:
            self.logger.error(f"Error closing connections: {str(e)}")

    def __del__(self):
        """Cleanup when object is destroyed."""
        self.close_all_connections()
        if getattr(self, '_keepalive', None) is not None:
            self._keepalive.close()
            self._keepalive = None
