import secrets
import threading
from dataclasses import asdict, dataclass
from typing import Dict, Optional

from flask_login import UserMixin

@dataclass(frozen=True)
class Identity(UserMixin):
    user_id: str
    role: str
    name: str
    username: str

    def get_id(self) -> str:
        return self.user_id

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    def to_dict(self) -> Dict[str, str]:
        d = asdict(self)
        return {"userId": d["user_id"], "role": d["role"], "name": d["name"], "username": d["username"]}

class SessionStore:
    """token opaco -> Identity. Sem expiração: a sessão vive até o logout."""

    def create(self, identity: Identity) -> str:
        raise NotImplementedError

    def resolve(self, token: Optional[str]) -> Optional[Identity]:
        raise NotImplementedError

    def destroy(self, token: Optional[str]) -> None:
        raise NotImplementedError

class MemorySessionStore(SessionStore):
    def __init__(self):
        self._sessions: Dict[str, Identity] = {}
        self._lock = threading.Lock()

    def create(self, identity: Identity) -> str:
        token = secrets.token_hex(24)
        with self._lock:
            self._sessions[token] = identity
        return token

    def resolve(self, token: Optional[str]) -> Optional[Identity]:
        if not token:
            return None
        with self._lock:
            return self._sessions.get(token)

    def destroy(self, token: Optional[str]) -> None:
        if not token:
            return
        with self._lock:
            self._sessions.pop(token, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)
