#!/usr/bin/env python3
"""
Unit tests for the pending message queue and media key extraction.
"""

import unittest

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from blobrelay.config import DEFAULT_MEDIA_KEY_PATTERN
from blobrelay.models import Message, TextWithReferences
from blobrelay.pending import PendingEntry, PendingMessageQueue, compile_key_pattern, extract_media_keys


def make_entry(msg_id, text, keys, sender="alice", enqueued_at=0.0):
    message = Message(id=msg_id, sender=sender, body=TextWithReferences(text=text))
    return PendingEntry(message=message, unresolved=set(keys), enqueued_at=enqueued_at)


class TestExtractMediaKeys(unittest.TestCase):

    def setUp(self):
        self.pattern = compile_key_pattern(DEFAULT_MEDIA_KEY_PATTERN)

    def test_no_references(self):
        self.assertEqual(extract_media_keys("just words", self.pattern), [])
        self.assertEqual(extract_media_keys("", self.pattern), [])

    def test_distinct_in_order(self):
        text = "see blob:b and blob:a, then blob:b again."
        self.assertEqual(extract_media_keys(text, self.pattern), ["blob:b", "blob:a"])

    def test_browser_object_url(self):
        text = "look: blob:https://example.org/9b2f-41aa."
        self.assertEqual(extract_media_keys(text, self.pattern), ["blob:https://example.org/9b2f-41aa"])

    def test_stops_at_markup(self):
        text = '<img src="blob:abc-123"> (blob:xyz)'
        self.assertEqual(extract_media_keys(text, self.pattern), ["blob:abc-123", "blob:xyz"])


class TestPendingMessageQueue(unittest.TestCase):

    def setUp(self):
        self.queue = PendingMessageQueue()

    def test_single_key_resolution_substitutes_every_occurrence(self):
        entry = make_entry(1, "see blob:abc and again blob:abc", ["blob:abc"])
        self.queue.add(entry)

        ready = self.queue.resolve("blob:abc", "https://host/files/xyz.png")

        self.assertEqual(ready, [entry])
        self.assertEqual(entry.message.text,
                         "see https://host/files/xyz.png and again https://host/files/xyz.png")
        self.assertEqual(len(self.queue), 0)

    def test_key_is_not_treated_as_regex(self):
        entry = make_entry(1, "a blob:a.c b blob:abc", ["blob:a.c"])
        self.queue.add(entry)

        self.queue.resolve("blob:a.c", "URL")

        self.assertEqual(entry.message.text, "a URL b blob:abc")

    def test_key_that_prefixes_another_key_only_replaces_whole_tokens(self):
        entry = make_entry(1, "x blob:ab y blob:a", ["blob:ab", "blob:a"])
        self.queue.add(entry)

        self.assertEqual(self.queue.resolve("blob:a", "UA"), [])
        self.assertEqual(entry.message.text, "x blob:ab y UA")

        self.assertEqual(self.queue.resolve("blob:ab", "UAB"), [entry])
        self.assertEqual(entry.message.text, "x UAB y UA")

    def test_multiple_keys_any_order(self):
        for order in (["blob:1", "blob:2", "blob:3"], ["blob:3", "blob:1", "blob:2"]):
            queue = PendingMessageQueue()
            entry = make_entry(7, "blob:1 blob:2 blob:3", ["blob:1", "blob:2", "blob:3"])
            queue.add(entry)
            for i, key in enumerate(order):
                ready = queue.resolve(key, f"u{key[-1]}")
                if i < len(order) - 1:
                    self.assertEqual(ready, [])
                    self.assertEqual(len(queue), 1)
                else:
                    self.assertEqual(ready, [entry])
            self.assertEqual(entry.message.text, "u1 u2 u3")
            self.assertEqual(len(queue), 0)

    def test_shared_key_releases_both_entries(self):
        first = make_entry(1, "first blob:shared", ["blob:shared"])
        second = make_entry(2, "blob:shared second", ["blob:shared"])
        self.queue.add(first)
        self.queue.add(second)

        ready = self.queue.resolve("blob:shared", "U")

        self.assertEqual(ready, [first, second])
        self.assertEqual(first.message.text, "first U")
        self.assertEqual(second.message.text, "U second")
        self.assertEqual(len(self.queue), 0)

    def test_resolve_removes_only_ready_entries(self):
        a = make_entry(1, "blob:k", ["blob:k"])
        b = make_entry(2, "blob:k blob:other", ["blob:k", "blob:other"])
        c = make_entry(3, "blob:k", ["blob:k"])
        d = make_entry(4, "blob:unrelated", ["blob:unrelated"])
        for e in (a, b, c, d):
            self.queue.add(e)

        ready = self.queue.resolve("blob:k", "U")

        self.assertEqual(ready, [a, c])
        self.assertEqual(list(self.queue), [b, d])
        self.assertEqual(b.unresolved, {"blob:other"})
        self.assertEqual(b.message.text, "U blob:other")

    def test_resolving_unknown_key_changes_nothing(self):
        entry = make_entry(1, "blob:a", ["blob:a"])
        self.queue.add(entry)

        self.assertEqual(self.queue.resolve("blob:b", "U"), [])

        self.assertEqual(entry.message.text, "blob:a")
        self.assertEqual(entry.unresolved, {"blob:a"})

    def test_add_rejects_resolved_entry(self):
        with self.assertRaises(ValueError):
            self.queue.add(make_entry(1, "hello", []))

    def test_evict_expired(self):
        old = make_entry(1, "blob:a", ["blob:a"], enqueued_at=100.0)
        fresh = make_entry(2, "blob:b", ["blob:b"], enqueued_at=650.0)
        self.queue.add(old)
        self.queue.add(fresh)

        expired = self.queue.evict_expired(600.0, now=750.0)

        self.assertEqual(expired, [old])
        self.assertEqual(list(self.queue), [fresh])
        self.assertEqual(old.unresolved, {"blob:a"})


if __name__ == '__main__':
    unittest.main()
