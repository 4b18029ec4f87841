import json
import logging
import secrets
import tempfile
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional

from werkzeug.security import generate_password_hash

from errors import CorruptDataError, NotFound, StorageError

log = logging.getLogger(__name__)

ADMIN = "admin"
CONSULTOR = "consultor"

# (username, displayName, role)
ROSTER = [
    ("admin", "Administrador", ADMIN),
    ("graziele", "Graziele", CONSULTOR),
    ("pedro", "Pedro", CONSULTOR),
    ("gustavo", "Gustavo", CONSULTOR),
    ("poli", "Poli", CONSULTOR),
    ("victor", "Victor", CONSULTOR),
]

def empty_doc() -> Dict[str, Any]:
    return {"users": [], "sales": []}

def redact(user: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in user.items() if k not in ("passwordHash", "password")}

class JsonStore:
    """
    Documento JSON único com `users` e `sales`.

    Toda leitura-modificação-escrita passa pelo mesmo lock, e a gravação é
    feita num arquivo temporário renomeado por cima do original.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self._lock = threading.RLock()

    # ---------- arquivo ----------
    def load(self) -> Dict[str, Any]:
        with self._lock:
            if not self.path.exists():
                doc = empty_doc()
                self.save(doc)
                return doc
            try:
                raw = self.path.read_text(encoding="utf-8")
            except OSError as e:
                raise StorageError(f"Falha ao ler {self.path}: {e}") from e
            try:
                doc = json.loads(raw)
            except ValueError as e:
                log.error("data file %s is not valid JSON", self.path)
                raise CorruptDataError(f"Arquivo de dados corrompido: {self.path}") from e
            if not isinstance(doc, dict) or not isinstance(doc.get("users"), list) or not isinstance(doc.get("sales"), list):
                log.error("data file %s has an unexpected shape", self.path)
                raise CorruptDataError(f"Arquivo de dados corrompido: {self.path}")
            return doc

    def save(self, doc: Dict[str, Any]) -> None:
        with self._lock:
            try:
                payload = json.dumps(doc, indent=2, ensure_ascii=False, allow_nan=False)
            except (TypeError, ValueError) as e:
                raise StorageError(f"Documento inválido para {self.path}: {e}") from e
            tmp_path = None
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                with tempfile.NamedTemporaryFile("w", delete=False, encoding="utf-8", dir=str(self.path.parent), suffix=".tmp") as tmp:
                    tmp_path = Path(tmp.name)
                    tmp.write(payload)
                tmp_path.replace(self.path)
            except OSError as e:
                if tmp_path is not None:
                    tmp_path.unlink(missing_ok=True)
                raise StorageError(f"Falha ao gravar {self.path}: {e}") from e

    @contextmanager
    def transaction(self) -> Iterator[Dict[str, Any]]:
        """Carrega o documento, entrega para alteração e grava ao sair sem erro."""
        with self._lock:
            doc = self.load()
            yield doc
            self.save(doc)

    # ---------- usuários ----------
    def seed_users_if_needed(self, admin_password: Optional[str] = None, consultor_password: str = "1234") -> bool:
        with self._lock:
            doc = self.load()
            if doc["users"]:
                return False
            if not admin_password:
                admin_password = secrets.token_urlsafe(12)
                log.warning("ADMIN_PASSWORD not set; generated initial admin password: %s", admin_password)
            users = []
            for username, name, role in ROSTER:
                pw = admin_password if role == ADMIN else consultor_password
                users.append({
                    "id": f"u_{username}",
                    "username": username,
                    "displayName": name,
                    "role": role,
                    "passwordHash": generate_password_hash(pw),
                })
            doc["users"] = users
            if doc["sales"]:
                log.warning("seeding users into %s, which already holds %d sales; keeping them", self.path, len(doc["sales"]))
            self.save(doc)
            log.info("seeded %d users into %s", len(users), self.path)
            return True

    def find_user_by_username(self, username: str) -> Optional[Dict[str, Any]]:
        u = (username or "").strip().lower()
        for user in self.load()["users"]:
            if str(user.get("username", "")).lower() == u:
                return user
        return None

    def find_user_by_id(self, user_id: str) -> Optional[Dict[str, Any]]:
        for user in self.load()["users"]:
            if user.get("id") == user_id:
                return user
        return None

    def list_users_redacted(self) -> List[Dict[str, Any]]:
        return [redact(u) for u in self.load()["users"]]

    # ---------- vendas ----------
    def list_sales_for_owner(self, role: str, user_id: str) -> List[Dict[str, Any]]:
        sales = self.load()["sales"]
        if role == ADMIN:
            return sales
        return [s for s in sales if s.get("userId") == user_id]

    def get_sale(self, sale_id: str) -> Optional[Dict[str, Any]]:
        for s in self.load()["sales"]:
            if s.get("id") == sale_id:
                return s
        return None

    def create_sale(self, sale: Dict[str, Any]) -> Dict[str, Any]:
        with self.transaction() as doc:
            doc["sales"].insert(0, sale)
        return sale

    def update_sale_by_id(self, sale_id: str, transform: Callable[[Dict[str, Any]], Dict[str, Any]]) -> Dict[str, Any]:
        """
        Aplica `transform` ao registro atual. Se `transform` levantar exceção,
        nada é gravado.
        """
        with self.transaction() as doc:
            for i, s in enumerate(doc["sales"]):
                if s.get("id") == sale_id:
                    updated = transform(dict(s))
                    doc["sales"][i] = updated
                    return updated
            raise NotFound()

    def delete_sale_by_id(self, sale_id: str, check: Optional[Callable[[Dict[str, Any]], None]] = None) -> Dict[str, Any]:
        with self.transaction() as doc:
            for i, s in enumerate(doc["sales"]):
                if s.get("id") == sale_id:
                    if check is not None:
                        check(s)
                    return doc["sales"].pop(i)
            raise NotFound()
