import threading
import unittest

from storage.handoff import HandoffStore


class TestHandoffStore(unittest.TestCase):
    def test_set_get_roundtrip_on_disk(self):
        import tempfile
        import os
        tmp = tempfile.NamedTemporaryFile(delete=False, suffix='.db')
        path = tmp.name
        tmp.close()
        try:
            with HandoffStore(path) as store:
                store.set_json('ConsolidatedReleaseData', {'projects': {'web': [{'teamDisplayName': '金流團隊'}]}})
            with HandoffStore(path) as store:
                self.assertEqual(store.get_json('ConsolidatedReleaseData')['projects']['web'][0]['teamDisplayName'], '金流團隊')
                self.assertIn('金流團隊', store.get('ConsolidatedReleaseData'))
        finally:
            try:
                os.remove(path)
            except OSError:
                pass

    def test_missing_key(self):
        with HandoffStore() as store:
            self.assertIsNone(store.get('nope'))
            self.assertIsNone(store.get_json('nope'))
            self.assertFalse(store.exists('nope'))

    def test_last_writer_wins(self):
        with HandoffStore() as store:
            store.set('k', 'one')
            store.set('k', 'two')
            self.assertEqual(store.get('k'), 'two')
            self.assertEqual(len(store.list_keys()), 1)

    def test_delete_and_clear(self):
        with HandoffStore() as store:
            store.set('a', '1')
            store.set('b', '2')
            self.assertEqual(store.delete('a'), 1)
            self.assertEqual(store.delete('a'), 0)
            self.assertEqual([k['key'] for k in store.list_keys()], ['b'])
            store.clear()
            self.assertEqual(store.list_keys(), [])


def test_concurrent_writes(tmp_path):
    store = HandoffStore(str(tmp_path / 'store.db'))
    errors = []

    def worker(n):
        try:
            for i in range(20):
                store.set_json(f'k{n}-{i}', {'n': n, 'i': i})
        except Exception as e:  # surfaced through the assertion below
            errors.append(e)

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert errors == []
    assert len(store.list_keys()) == 80
    store.close()
