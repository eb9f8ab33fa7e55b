import json
import os
import tempfile
import unittest

from recitation.catalog import JuzIndex, SurahCatalog, fix_arabic_text
from recitation.errors import RecitationError
from recitation.models import SurahCatalogEntry, VerseRef


class TestSurahCatalog(unittest.TestCase):

    @classmethod
    def setUpClass(cls):
        cls.catalog = SurahCatalog.load()

    def test_all_surahs_present(self):
        self.assertEqual(len(self.catalog), 114)
        self.assertEqual([e.id for e in self.catalog], list(range(1, 115)))

    def test_lookup(self):
        yasin = self.catalog.get(36)
        self.assertEqual(yasin.simple_name, "Ya-Sin")
        self.assertEqual(yasin.arabic_name, "يس")
        self.assertIn("Yaseen", yasin.aliases)
        self.assertEqual(self.catalog.get(1).verses_count, 7)
        self.assertIsNone(self.catalog.get(115))

    def test_duplicate_ids_rejected(self):
        entry = SurahCatalogEntry(id=1, name_arabic="الفاتحة", name_simple="Al-Fatihah")
        with self.assertRaises(RecitationError):
            SurahCatalog([entry, entry])

    def test_missing_and_corrupted_files(self):
        with tempfile.TemporaryDirectory() as tmp:
            with self.assertRaises(RecitationError):
                SurahCatalog.load(os.path.join(tmp, "missing.json"))
            broken = os.path.join(tmp, "broken.json")
            with open(broken, "w", encoding="utf-8") as f:
                f.write("{not json")
            with self.assertRaises(RecitationError):
                SurahCatalog.load(broken)
            invalid = os.path.join(tmp, "invalid.json")
            with open(invalid, "w", encoding="utf-8") as f:
                json.dump([{"id": 0, "name_arabic": "", "name_simple": "x"}], f)
            with self.assertRaises(RecitationError):
                SurahCatalog.load(invalid)


class TestJuzIndex(unittest.TestCase):

    @classmethod
    def setUpClass(cls):
        cls.index = JuzIndex.load()

    def test_bounds(self):
        self.assertEqual(self.index.bounds(1), (VerseRef.parse("1:1"), VerseRef.parse("2:141")))
        self.assertEqual(self.index.bounds(30), (VerseRef.parse("78:1"), VerseRef.parse("114:6")))
        with self.assertRaises(KeyError):
            self.index.bounds(31)

    def test_juz_of(self):
        self.assertEqual(self.index.juz_of(VerseRef.parse("2:200")), 2)
        self.assertEqual(self.index.juz_of(VerseRef.parse("114:6")), 30)
        self.assertEqual(self.index.juz_of(VerseRef.parse("1:1")), 1)

    def test_incomplete_index_rejected(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "juz.json")
            with open(path, "w", encoding="utf-8") as f:
                json.dump({"1": {"start": "1:1", "end": "2:141"}}, f)
            with self.assertRaises(RecitationError):
                JuzIndex.load(path)


class TestFixArabicText(unittest.TestCase):

    def test_empty_and_latin(self):
        self.assertEqual(fix_arabic_text(""), "")
        self.assertEqual(fix_arabic_text("abc"), "abc")
        self.assertEqual(fix_arabic_text("abc", reversed_display=True), "cba")

    def test_arabic_is_reshaped(self):
        shaped = fix_arabic_text("بسم")
        self.assertTrue(shaped)
        self.assertNotEqual(shaped, "بسم")


if __name__ == '__main__':
    unittest.main()
