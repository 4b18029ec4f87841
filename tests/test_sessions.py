# tests/test_sessions.py
import unittest

from sessions import Identity, MemorySessionStore


class TestMemorySessionStore(unittest.TestCase):
    def setUp(self):
        self.store = MemorySessionStore()
        self.pedro = Identity(user_id="u_pedro", role="consultor", name="Pedro", username="pedro")

    def test_create_and_resolve(self):
        token = self.store.create(self.pedro)
        self.assertEqual(len(token), 48)
        self.assertEqual(self.store.resolve(token), self.pedro)

    def test_tokens_are_unique(self):
        tokens = {self.store.create(self.pedro) for _ in range(50)}
        self.assertEqual(len(tokens), 50)
        self.assertEqual(len(self.store), 50)

    def test_unknown_or_missing_token(self):
        self.assertIsNone(self.store.resolve(None))
        self.assertIsNone(self.store.resolve(""))
        self.assertIsNone(self.store.resolve("nao-existe"))

    def test_destroy(self):
        token = self.store.create(self.pedro)
        self.store.destroy(token)
        self.assertIsNone(self.store.resolve(token))
        # destruir de novo não é erro
        self.store.destroy(token)
        self.store.destroy(None)


class TestIdentity(unittest.TestCase):
    def test_to_dict(self):
        ident = Identity(user_id="u_admin", role="admin", name="Administrador", username="admin")
        self.assertEqual(ident.to_dict(), {"userId": "u_admin", "role": "admin", "name": "Administrador", "username": "admin"})
        self.assertEqual(ident.get_id(), "u_admin")
        self.assertTrue(ident.is_admin)
        self.assertTrue(ident.is_authenticated)
