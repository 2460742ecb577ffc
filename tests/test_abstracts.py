import unittest

from pub_sync.abstracts import (
    AbstractSection,
    filter_known_headers,
    find_header_candidates,
    is_known_header,
    normalize_label,
    render_plain,
    segment_abstract,
    strip_leading_duplicate_header,
)


FOUR_PART = (
    "Background: Arterial stiffness predicts cardiovascular events. "
    "Methods: We enrolled 100 adults. "
    "Results: Pulse wave velocity was higher in cases. "
    "Conclusions: Stiffness matters"
)


class SegmentAbstractTests(unittest.TestCase):
    def test_four_known_headers_give_four_sections(self) -> None:
        fragments = segment_abstract(FOUR_PART)
        self.assertEqual([f.kind for f in fragments], ["section"] * 4)
        self.assertEqual(
            [f.display_label for f in fragments],
            ["Background", "Methods", "Results", "Conclusions"],
        )
        self.assertEqual(fragments[1].content, "We enrolled 100 adults.")
        # trailing period added when missing
        self.assertEqual(fragments[3].content, "Stiffness matters.")

    def test_unknown_label_stays_unstructured(self) -> None:
        fragments = segment_abstract("Note: this is unusual")
        self.assertEqual(len(fragments), 1)
        self.assertEqual(fragments[0].kind, "unstructured")
        self.assertEqual(fragments[0].display_label, "Abstract")
        self.assertEqual(fragments[0].content, "Note: this is unusual")

    def test_single_header_is_not_split(self) -> None:
        fragments = segment_abstract("Background: only one labelled part here.")
        self.assertEqual([f.kind for f in fragments], ["unstructured"])

    def test_empty_abstract(self) -> None:
        for value in (None, "", "   ", "<p></p>"):
            fragments = segment_abstract(value)
            self.assertEqual(len(fragments), 1)
            self.assertEqual(fragments[0].kind, "empty")
            self.assertEqual(fragments[0].content, "No abstract available.")

    def test_all_caps_labels_are_title_cased(self) -> None:
        fragments = segment_abstract("BACKGROUND: Some context here. MAIN RESULTS: It worked well.")
        self.assertEqual([f.display_label for f in fragments], ["Background", "Main Results"])

    def test_preamble_before_first_header(self) -> None:
        text = (
            "This trial examined arterial stiffness in older adults. "
            "Methods: Tonometry was used. Results: Stiffness rose with age."
        )
        fragments = segment_abstract(text)
        self.assertEqual(fragments[0].kind, "preamble")
        self.assertEqual(fragments[0].content, "This trial examined arterial stiffness in older adults.")
        self.assertEqual([f.display_label for f in fragments[1:]], ["Methods", "Results"])

    def test_short_preamble_is_dropped(self) -> None:
        fragments = segment_abstract("In brief. Methods: Tonometry was used. Results: Stiffness rose.")
        self.assertEqual([f.kind for f in fragments], ["section", "section"])

    def test_joined_headers_are_accepted(self) -> None:
        text = "Methods and Results: We measured PWV in 40 patients. Conclusions: PWV predicts risk."
        fragments = segment_abstract(text)
        self.assertEqual([f.display_label for f in fragments], ["Methods and Results", "Conclusions"])

    def test_html_is_sanitized_first(self) -> None:
        text = "<b>Background:</b> CO<sub>2</sub> &amp; O<sub>2</sub> matter. <b>Results:</b> They did."
        fragments = segment_abstract(text)
        self.assertEqual(fragments[0].content, "CO2 & O2 matter.")
        self.assertEqual(fragments[1].content, "They did.")

    def test_duplicate_header_in_content_is_stripped(self) -> None:
        text = "Background: Background. Stiffness is common. Methods: Observational cohort."
        fragments = segment_abstract(text)
        self.assertEqual(fragments[0].content, "Stiffness is common.")

    def test_returns_new_list_each_call(self) -> None:
        first = segment_abstract(FOUR_PART)
        first.clear()
        self.assertEqual(len(segment_abstract(FOUR_PART)), 4)

    def test_repeated_calls_give_equal_fragments(self) -> None:
        preamble = (
            "This trial examined arterial stiffness in older adults. "
            "Methods: Tonometry was used. Results: Stiffness rose with age."
        )
        for text in (FOUR_PART, preamble, "Note: this is unusual"):
            with self.subTest(text=text[:30]):
                first = [f.to_dict() for f in segment_abstract(text)]
                second = [f.to_dict() for f in segment_abstract(text)]
                self.assertTrue(first)
                self.assertEqual(first, second)

    def test_render_plain(self) -> None:
        text = render_plain(segment_abstract("Aims: Test things. Results: Things tested."))
        self.assertEqual(text, "Aims: Test things.\n\nResults: Things tested.")


class HeaderDetectionTests(unittest.TestCase):
    def test_is_known_header(self) -> None:
        self.assertTrue(is_known_header("Results"))
        self.assertTrue(is_known_header("TRIAL REGISTRATION"))
        self.assertTrue(is_known_header("Materials and Methods"))
        self.assertTrue(is_known_header("Results & Conclusions"))
        self.assertFalse(is_known_header("Methods and Stuff"))
        self.assertFalse(is_known_header("Note"))
        self.assertFalse(is_known_header(""))

    def test_candidates_need_a_sentence_boundary(self) -> None:
        labels = [c.label for c in find_header_candidates("We measured the ratio of flow: 3 to 1. Results: fine.")]
        self.assertEqual(labels, ["Results"])

    def test_overlong_labels_are_skipped(self) -> None:
        labels = [c.label for c in find_header_candidates("Extraordinarily Lengthy Heading Words: x.")]
        self.assertEqual(labels, [])

    def test_proximity_window_drops_near_duplicates(self) -> None:
        cands = [
            AbstractSection(label="Results", display_label="Results", header_start=0, content_start=9),
            AbstractSection(label="Results", display_label="Results", header_start=5, content_start=14),
            AbstractSection(label="Conclusions", display_label="Conclusions", header_start=40, content_start=53),
        ]
        kept = filter_known_headers(cands)
        self.assertEqual([c.header_start for c in kept], [0, 40])

    def test_normalize_label(self) -> None:
        self.assertEqual(normalize_label("METHODS"), "Methods")
        self.assertEqual(normalize_label("Study design"), "Study design")
        self.assertEqual(normalize_label("A"), "A")

    def test_strip_leading_duplicate_header_keeps_unrelated_text(self) -> None:
        self.assertEqual(strip_leading_duplicate_header("Results: 12 events.", "Results"), "12 events.")
        self.assertEqual(strip_leading_duplicate_header("We found x.", "Results"), "We found x.")


if __name__ == "__main__":
    unittest.main()
