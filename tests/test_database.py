import os
import sqlite3
import tempfile
import unittest

from modbbsd.database import Database, StoreError, hash_password, verify_password


def make_db(tmpdir: str) -> Database:
    return Database(os.path.join(tmpdir, 'test.db'), bcrypt_rounds=4)


class PasswordHashTests(unittest.TestCase):
    def test_hash_and_verify(self) -> None:
        hashed = hash_password('secret', rounds=4)
        self.assertTrue(verify_password('secret', hashed))
        self.assertFalse(verify_password('wrong', hashed))

    def test_malformed_hash_does_not_raise(self) -> None:
        self.assertFalse(verify_password('secret', 'not-a-bcrypt-hash'))


class UserTests(unittest.TestCase):
    def setUp(self) -> None:
        self.tmp = tempfile.TemporaryDirectory()
        self.db = make_db(self.tmp.name)

    def tearDown(self) -> None:
        self.db.close()
        self.tmp.cleanup()

    def test_verify_credential(self) -> None:
        self.db.create_user('alice', 'pw1')
        self.assertTrue(self.db.verify_credential('alice', 'pw1'))
        self.assertFalse(self.db.verify_credential('alice', 'nope'))

    def test_unknown_user_is_indistinguishable_from_wrong_password(self) -> None:
        self.db.create_user('alice', 'pw1')
        self.assertIs(self.db.verify_credential('ghost', 'pw1'), False)
        self.assertIs(self.db.verify_credential('alice', 'bad'), False)

    def test_duplicate_username_rejected(self) -> None:
        self.db.create_user('alice', 'pw1')
        with self.assertRaises(StoreError):
            self.db.create_user('alice', 'pw2')

    def test_invalid_role_rejected(self) -> None:
        with self.assertRaises(StoreError):
            self.db.create_user('bob', 'pw', 'superuser')
        self.db.create_user('bob', 'pw')
        with self.assertRaises(StoreError):
            self.db.set_role('bob', 'root')
        self.assertEqual(self.db.get_user('bob').role, 'user')

    def test_set_role_and_missing_user(self) -> None:
        self.db.create_user('bob', 'pw')
        self.db.set_role('bob', 'moderator')
        self.assertEqual(self.db.get_user('bob').role, 'moderator')
        with self.assertRaises(StoreError):
            self.db.set_role('nobody', 'admin')

    def test_list_users_sorted_by_name(self) -> None:
        for name in ('carol', 'alice', 'bob'):
            self.db.create_user(name, 'pw')
        self.assertEqual([u.username for u in self.db.list_users()], ['alice', 'bob', 'carol'])

    def test_change_password_checks_current(self) -> None:
        self.db.create_user('alice', 'old')
        with self.assertRaises(StoreError) as ctx:
            self.db.change_password('alice', 'wrong', 'new')
        self.assertIn('Current password is incorrect', str(ctx.exception))
        self.assertTrue(self.db.verify_credential('alice', 'old'))
        self.db.change_password('alice', 'old', 'new')
        self.assertTrue(self.db.verify_credential('alice', 'new'))
        self.assertFalse(self.db.verify_credential('alice', 'old'))

    def test_reset_password(self) -> None:
        self.db.create_user('alice', 'old')
        self.db.reset_password('alice', 'password')
        self.assertTrue(self.db.verify_credential('alice', 'password'))

    def test_delete_user_with_content_is_refused(self) -> None:
        self.db.create_user('alice', 'pw')
        forum = self.db.create_forum('General')
        self.db.create_topic(forum.id, 'alice', 'Hello')
        with self.assertRaises(StoreError):
            self.db.delete_user('alice')
        self.assertIsNotNone(self.db.get_user('alice'))

    def test_delete_user(self) -> None:
        self.db.create_user('alice', 'pw')
        self.db.delete_user('alice')
        self.assertIsNone(self.db.get_user('alice'))
        with self.assertRaises(StoreError):
            self.db.delete_user('alice')

    def test_seed_demo_accounts_is_idempotent(self) -> None:
        self.db.seed_demo_accounts()
        self.db.seed_demo_accounts()
        roles = {u.username: u.role for u in self.db.list_users()}
        self.assertEqual(roles, {'admin': 'admin', 'mod': 'moderator', 'user': 'user'})
        self.assertTrue(self.db.verify_credential('admin', 'adminpass'))


class ContentTests(unittest.TestCase):
    def setUp(self) -> None:
        self.tmp = tempfile.TemporaryDirectory()
        self.db = make_db(self.tmp.name)
        self.db.create_user('alice', 'pw')

    def tearDown(self) -> None:
        self.db.close()
        self.tmp.cleanup()

    def test_forums_sorted_by_name(self) -> None:
        self.db.create_forum('Zeta')
        self.db.create_forum('Alpha', 'first')
        forums = self.db.list_forums()
        self.assertEqual([f.name for f in forums], ['Alpha', 'Zeta'])
        self.assertEqual(forums[0].description, 'first')

    def test_new_forum_sorted_among_existing(self) -> None:
        self.db.create_forum('Zeta')
        self.db.create_forum('Alpha')
        self.db.create_forum('General', 'chat')
        forums = self.db.list_forums()
        self.assertEqual([f.name for f in forums], ['Alpha', 'General', 'Zeta'])
        self.assertEqual([f.description for f in forums if f.name == 'General'], ['chat'])
        with self.assertRaises(StoreError):
            self.db.create_forum('General')

    def test_update_forum(self) -> None:
        forum = self.db.create_forum('General')
        self.db.update_forum(forum.id, 'Lobby', 'chat')
        self.assertEqual(self.db.list_forums()[0].name, 'Lobby')
        with self.assertRaises(StoreError):
            self.db.update_forum(9999, 'x')

    def test_topics_newest_first_and_posts_oldest_first(self) -> None:
        forum = self.db.create_forum('General')
        first = self.db.create_topic(forum.id, 'alice', 'First')
        self.db.create_topic(forum.id, 'alice', 'Second')
        self.assertEqual([t.title for t in self.db.list_topics(forum.id)], ['Second', 'First'])
        self.db.create_post(first.id, 'alice', 'one')
        self.db.create_post(first.id, 'alice', 'two')
        posts = self.db.list_posts(first.id)
        self.assertEqual([p.content for p in posts], ['one', 'two'])
        self.assertEqual(posts[0].author, 'alice')

    def test_empty_title_and_content_rejected(self) -> None:
        forum = self.db.create_forum('General')
        with self.assertRaises(StoreError):
            self.db.create_topic(forum.id, 'alice', '')
        topic = self.db.create_topic(forum.id, 'alice', 'T')
        with self.assertRaises(StoreError):
            self.db.create_post(topic.id, 'alice', '')

    def test_delete_topic_removes_posts(self) -> None:
        forum = self.db.create_forum('General')
        topic = self.db.create_topic(forum.id, 'alice', 'T')
        self.db.create_post(topic.id, 'alice', 'hello')
        self.db.delete_topic(topic.id)
        self.assertEqual(self.db.list_topics(forum.id), [])
        self.assertEqual(self.db.list_posts(topic.id), [])

    def test_delete_forum_cascades(self) -> None:
        forum = self.db.create_forum('General')
        other = self.db.create_forum('Other')
        topic = self.db.create_topic(forum.id, 'alice', 'T')
        kept = self.db.create_topic(other.id, 'alice', 'K')
        self.db.create_post(topic.id, 'alice', 'gone')
        self.db.create_post(kept.id, 'alice', 'stays')
        self.db.delete_forum(forum.id)
        self.assertEqual([f.name for f in self.db.list_forums()], ['Other'])
        self.assertEqual(self.db.list_posts(topic.id), [])
        self.assertEqual(len(self.db.list_posts(kept.id)), 1)

    def test_failed_cascade_leaves_everything_in_place(self) -> None:
        forum = self.db.create_forum('General')
        topic = self.db.create_topic(forum.id, 'alice', 'T')
        self.db.create_post(topic.id, 'alice', 'hello')
        self.db.conn.execute(
            "CREATE TEMP TRIGGER fail_topic_delete BEFORE DELETE ON topics "
            "BEGIN SELECT RAISE(ABORT, 'boom'); END")
        with self.assertRaises(sqlite3.DatabaseError):
            self.db.delete_forum(forum.id)
        self.assertEqual(len(self.db.list_forums()), 1)
        self.assertEqual(len(self.db.list_topics(forum.id)), 1)
        self.assertEqual(len(self.db.list_posts(topic.id)), 1)

    def test_post_in_deleted_topic_rejected(self) -> None:
        forum = self.db.create_forum('General')
        topic = self.db.create_topic(forum.id, 'alice', 'T')
        self.db.delete_topic(topic.id)
        with self.assertRaises(StoreError):
            self.db.create_post(topic.id, 'alice', 'late')


if __name__ == '__main__':
    unittest.main()
