import os
import stat
import tempfile
import unittest

import asyncssh

from modbbsd.hostkey import load_or_create_host_key


class HostKeyTests(unittest.TestCase):
    def setUp(self) -> None:
        self.tmp = tempfile.TemporaryDirectory()
        self.path = os.path.join(self.tmp.name, 'keys', 'host_key')

    def tearDown(self) -> None:
        self.tmp.cleanup()

    def test_generated_once_then_reused(self) -> None:
        first = load_or_create_host_key(self.path)
        self.assertTrue(os.path.exists(self.path))
        self.assertEqual(stat.S_IMODE(os.stat(self.path).st_mode), 0o600)
        second = load_or_create_host_key(self.path)
        self.assertEqual(first.export_public_key(), second.export_public_key())
        self.assertEqual(second.get_algorithm(), 'ssh-rsa')

    def test_corrupt_key_is_not_replaced(self) -> None:
        os.makedirs(os.path.dirname(self.path))
        with open(self.path, 'w') as f:
            f.write('garbage')
        with self.assertRaises(asyncssh.KeyImportError):
            load_or_create_host_key(self.path)
        with open(self.path) as f:
            self.assertEqual(f.read(), 'garbage')


if __name__ == '__main__':
    unittest.main()
