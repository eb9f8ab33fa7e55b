"""
Unit tests for the reference matcher: numeric references, surah names in both scripts,
juz references and fuzzy matching against verses already on screen.
"""

import unittest

from recitation.matcher import ReferenceMatcher
from recitation.models import NO_MATCH, AyahOrigin, AyahRecord, JuzIntent, ScriptVariant, SurahIntent, VerseRef

BAQARAH_OPENING = [
    {"verse_key": "2:1", "text_uthmani": "الٓمٓ", "text_imlaei_simple": "الم"},
    {"verse_key": "2:2", "text_uthmani": "ذَٰلِكَ ٱلْكِتَٰبُ لَا رَيْبَ ۛ فِيهِ ۛ هُدًى لِّلْمُتَّقِينَ",
     "text_imlaei_simple": "ذلك الكتاب لا ريب فيه هدى للمتقين"},
    {"verse_key": "2:3", "text_imlaei_simple": "الذين يؤمنون بالغيب ويقيمون الصلاة ومما رزقناهم ينفقون"},
]


class TestNumericReferences(unittest.TestCase):

    @classmethod
    def setUpClass(cls):
        cls.matcher = ReferenceMatcher()

    def test_surah_colon_ayah(self):
        intent = self.matcher.match("2:255")
        self.assertEqual(intent.kind, "ayah")
        self.assertEqual(intent.verse_key, VerseRef(surah=2, ayah=255))
        self.assertEqual(intent.confidence, 100)
        self.assertEqual(intent.origin, AyahOrigin.REMOTE)

    def test_numeric_pair_wins_over_surah_name(self):
        intent = self.matcher.match("Yaseen 2:255")
        self.assertEqual(intent.kind, "ayah")
        self.assertEqual(intent.verse_key, VerseRef(surah=2, ayah=255))
        self.assertEqual(intent.confidence, 100)

    def test_arabic_indic_digits(self):
        intent = self.matcher.match("٢:٢٥٥")
        self.assertEqual(intent.verse_key, VerseRef(surah=2, ayah=255))

    def test_bare_number_is_not_a_reference(self):
        self.assertEqual(self.matcher.match("255"), NO_MATCH)

    def test_explicit_surah_number(self):
        intent = self.matcher.match("surah 36")
        self.assertIsInstance(intent, SurahIntent)
        self.assertEqual((intent.id, intent.confidence), (36, 100))

    def test_out_of_range_surah_number(self):
        self.assertEqual(self.matcher.match("surah 200"), NO_MATCH)

    def test_empty_input(self):
        self.assertEqual(self.matcher.match(""), NO_MATCH)
        self.assertEqual(self.matcher.match("   "), NO_MATCH)


class TestSurahNames(unittest.TestCase):

    @classmethod
    def setUpClass(cls):
        cls.matcher = ReferenceMatcher()

    def test_transliterated_alias(self):
        intent = self.matcher.match("Yaseen")
        self.assertIsInstance(intent, SurahIntent)
        self.assertEqual(intent.id, 36)
        self.assertEqual(intent.confidence, 100)

    def test_arabic_name_with_filler(self):
        intent = self.matcher.match("سورة يس")
        self.assertIsInstance(intent, SurahIntent)
        self.assertEqual(intent.id, 36)

    def test_name_with_article(self):
        intent = self.matcher.match("Surah Al-Kahf")
        self.assertEqual(intent.id, 18)

    def test_name_with_ayah_number(self):
        intent = self.matcher.match("Yaseen 5")
        self.assertEqual(intent.kind, "ayah")
        self.assertEqual(intent.verse_key, VerseRef(surah=36, ayah=5))

    def test_ayah_number_beyond_surah_length(self):
        intent = self.matcher.match("Yaseen 500")
        self.assertIsInstance(intent, SurahIntent)
        self.assertEqual(intent.id, 36)

    def test_nonsense(self):
        self.assertEqual(self.matcher.match("xyzzy qwerty"), NO_MATCH)


class TestJuzReferences(unittest.TestCase):

    @classmethod
    def setUpClass(cls):
        cls.matcher = ReferenceMatcher()

    def test_juz(self):
        self.assertEqual(self.matcher.match("juz 30"), JuzIntent(id=30))

    def test_juz_with_index(self):
        intent = self.matcher.match("juz 30 5")
        self.assertEqual(intent.kind, "juz_ayah")
        self.assertEqual((intent.juz_id, intent.index_within_juz), (30, 5))

    def test_colon_pair_after_juz_word_is_a_verse(self):
        intent = self.matcher.match("para 2:255")
        self.assertEqual(intent.kind, "ayah")
        self.assertEqual(intent.verse_key, VerseRef(surah=2, ayah=255))

    def test_juz_out_of_range(self):
        self.assertEqual(self.matcher.match("juz 31"), NO_MATCH)
        self.assertEqual(self.matcher.match("juz 40 2"), NO_MATCH)


class TestLocalAyahs(unittest.TestCase):

    @classmethod
    def setUpClass(cls):
        cls.matcher = ReferenceMatcher()

    def test_muqattaat_matches_local_verse(self):
        intent = self.matcher.match("الم", BAQARAH_OPENING)
        self.assertEqual(intent.kind, "ayah")
        self.assertEqual(intent.verse_key, VerseRef(surah=2, ayah=1))
        self.assertEqual(intent.origin, AyahOrigin.LOCAL)

    def test_misspelled_recitation(self):
        intent = self.matcher.match("ذلك الكتب لا ريب فيه", BAQARAH_OPENING)
        self.assertEqual(intent.verse_key, VerseRef(surah=2, ayah=2))
        self.assertEqual(intent.origin, AyahOrigin.LOCAL)
        self.assertGreaterEqual(intent.confidence, 60)

    def test_invalid_local_records_are_skipped(self):
        ayahs = [{"verse_key": "bad"}, "not a record", {"verse_key": "2:1", "text_imlaei_simple": "الم"}]
        intent = self.matcher.match("الم", ayahs)
        self.assertEqual(intent.verse_key, VerseRef(surah=2, ayah=1))

    def test_latin_query_uses_transliteration(self):
        record = AyahRecord(verse_key=VerseRef(surah=2, ayah=255), texts={
            ScriptVariant.IMLAEI_SIMPLE: "الله لا إله إلا هو الحي القيوم",
            ScriptVariant.TRANSLITERATION: "Allahu la ilaha illa Huwa, Al-Haiyul-Qaiyum",
        })
        intent = self.matcher.match("allahu la ilaha illa huwa", [record])
        self.assertEqual(intent.verse_key, VerseRef(surah=2, ayah=255))
        self.assertEqual(intent.origin, AyahOrigin.LOCAL)

    def test_without_local_ayahs_verse_text_is_no_match(self):
        self.assertEqual(self.matcher.match("الم"), NO_MATCH)

    def test_injected_text_similarity(self):
        matcher = ReferenceMatcher(text_similarity=lambda query, text: 0.0)
        self.assertEqual(matcher.match("الم", BAQARAH_OPENING), NO_MATCH)


class TestAutoNavigate(unittest.TestCase):

    def test_threshold(self):
        self.assertTrue(ReferenceMatcher.should_auto_navigate(SurahIntent(id=36, confidence=100)))
        self.assertFalse(ReferenceMatcher.should_auto_navigate(SurahIntent(id=36, confidence=69.5)))
        self.assertTrue(ReferenceMatcher.should_auto_navigate(JuzIntent(id=1)))
        self.assertFalse(ReferenceMatcher.should_auto_navigate(NO_MATCH))


if __name__ == '__main__':
    unittest.main()
