"""
Persistence of the project's last declared snapshot per declaration class.
"""

import json
import sqlite3
from abc import ABC, abstractmethod
from typing import Dict, Mapping

from .crypto import SecretCipher
from .db import get_db, init_db
from .errors import StoreError
from .schema import DeclarationClass


class SnapshotStore(ABC):

    @abstractmethod
    def load(self, declaration_class: DeclarationClass) -> Dict[str, str]:
        pass

    @abstractmethod
    def save(self, declaration_class: DeclarationClass, snapshot: Mapping[str, str]) -> None:
        pass


class InMemorySnapshotStore(SnapshotStore):

    def __init__(self):
        self._snapshots: Dict[DeclarationClass, Dict[str, str]] = {}

    def load(self, declaration_class: DeclarationClass) -> Dict[str, str]:
        return dict(self._snapshots.get(declaration_class, {}))

    def save(self, declaration_class: DeclarationClass, snapshot: Mapping[str, str]) -> None:
        self._snapshots[declaration_class] = dict(snapshot)


class SQLiteSnapshotStore(SnapshotStore):
    """Keeps snapshots in the ``snapshots`` table beside the kv table.

    The sensitive snapshot is encrypted as a whole when a cipher is given.
    """

    def __init__(self, db_path: str, cipher: SecretCipher = None):
        self.db_path = db_path
        self.cipher = cipher
        init_db(db_path)

    def load(self, declaration_class: DeclarationClass) -> Dict[str, str]:
        try:
            with get_db(self.db_path) as conn:
                cursor = conn.cursor()
                cursor.execute(
                    "SELECT payload FROM snapshots WHERE decl_class = ?",
                    (declaration_class.value,)
                )
                row = cursor.fetchone()
        except sqlite3.Error as e:
            raise StoreError(f"Error loading {declaration_class.value} snapshot: {e}") from e

        if not row:
            return {}
        payload = row[0]
        if self.cipher is not None and declaration_class.sensitive:
            payload = self.cipher.decrypt(payload)
        try:
            return json.loads(payload)
        except json.JSONDecodeError as e:
            raise StoreError(f"Corrupt {declaration_class.value} snapshot: {e}") from e

    def save(self, declaration_class: DeclarationClass, snapshot: Mapping[str, str]) -> None:
        payload = json.dumps(dict(snapshot), sort_keys=True)
        if self.cipher is not None and declaration_class.sensitive:
            payload = self.cipher.encrypt(payload)

        try:
            with get_db(self.db_path) as conn:
                conn.execute(
                    '''
                    INSERT INTO snapshots (decl_class, payload, updated_at)
                    VALUES (?, ?, CURRENT_TIMESTAMP)
                    ON CONFLICT(decl_class) DO UPDATE SET
                        payload = excluded.payload,
                        updated_at = CURRENT_TIMESTAMP
                    ''',
                    (declaration_class.value, payload)
                )
        except sqlite3.Error as e:
            raise StoreError(f"Error saving {declaration_class.value} snapshot: {e}") from e
