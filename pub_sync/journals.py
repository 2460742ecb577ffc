"""
Journal name canonicalization and journal-family grouping.

Two static tables drive everything here:

* ``JOURNAL_NORMALIZATIONS`` maps a lowercased variant (case differences,
  " : " subtitle spacing, PubMed location qualifiers such as
  "(Dallas, Tex. : 1979)") to one canonical display name.
* ``JOURNAL_GROUPS`` lists journal families: a parent title and the
  canonical names of its sub-imprints.

Lookups are pure functions of these tables and the input string, so the
same name normalizes identically during ingestion and when re-aggregating
records already in the datastore.
"""
from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional, Tuple


@dataclass(frozen=True)
class JournalGroup:
    parent: str
    children: FrozenSet[str]

    def to_dict(self) -> Dict[str, object]:
        return {"parent": self.parent, "children": sorted(self.children)}


JOURNAL_NORMALIZATIONS: Mapping[str, str] = {
    # PLOS
    "plos one": "PLOS ONE",
    "plos computational biology": "PLOS Computational Biology",
    "plos medicine": "PLOS Medicine",

    # hypertension family
    "hypertension (dallas, tex. : 1979)": "Hypertension",
    "hypertension (dallas, texas : 1979)": "Hypertension",
    "hypertension research : official journal of the japanese society of hypertension": "Hypertension Research",
    "journal of hypertension": "Journal of Hypertension",
    "journal of human hypertension": "Journal of Human Hypertension",
    "american journal of hypertension": "American Journal of Hypertension",

    # circulation family
    "circulation research": "Circulation Research",
    "circulation. heart failure": "Circulation: Heart Failure",
    "circulation. cardiovascular imaging": "Circulation: Cardiovascular Imaging",
    "circulation. cardiovascular quality and outcomes": "Circulation: Cardiovascular Quality and Outcomes",

    # case-only variants
    "american heart journal": "American Heart Journal",
    "american journal of nephrology": "American Journal of Nephrology",
    "annals of biomedical engineering": "Annals of Biomedical Engineering",
    "annals of the rheumatic diseases": "Annals of the Rheumatic Diseases",
    "blood pressure monitoring": "Blood Pressure Monitoring",
    "clinical obesity": "Clinical Obesity",
    "diabetes, obesity & metabolism": "Diabetes, Obesity & Metabolism",
    "european journal of applied physiology": "European Journal of Applied Physiology",
    "european journal of clinical nutrition": "European Journal of Clinical Nutrition",
    "european journal of heart failure": "European Journal of Heart Failure",
    "experimental physiology": "Experimental Physiology",
    "internal medicine journal": "Internal Medicine Journal",
    "international journal of cardiology": "International Journal of Cardiology",
    "international journal of obesity (2005)": "International Journal of Obesity",
    "journal of internal medicine": "Journal of Internal Medicine",
    "journal of occupational and environmental medicine": "Journal of Occupational and Environmental Medicine",
    "journal of psychosomatic research": "Journal of Psychosomatic Research",
    "medicine and science in sports and exercise": "Medicine and Science in Sports and Exercise",
    "pediatric diabetes": "Pediatric Diabetes",
    "pediatric research": "Pediatric Research",
    "physiological measurement": "Physiological Measurement",
    "the british journal of nutrition": "The British Journal of Nutrition",
    "the canadian journal of cardiology": "The Canadian Journal of Cardiology",
    "the journal of clinical endocrinology and metabolism": "The Journal of Clinical Endocrinology and Metabolism",
    "the journal of pediatrics": "The Journal of Pediatrics",
    "the journal of physiology": "The Journal of Physiology",
    "acta diabetologica": "Acta Diabetologica",

    # location qualifiers
    "pediatric nephrology (berlin, germany)": "Pediatric Nephrology",
    "echocardiography (mount kisco, n.y.)": "Echocardiography",
    "vascular medicine (london, england)": "Vascular Medicine",
    "microcirculation (new york, n.y. : 1994)": "Microcirculation",
    "obesity (silver spring, md.)": "Obesity",
    "menopause (new york, n.y.)": "Menopause",
    "rheumatology (oxford, england)": "Rheumatology",
    "clinical science (london, england : 1979)": "Clinical Science",
    "aids (london, england)": "AIDS",
    "nutrition (burbank, los angeles county, calif.)": "Nutrition",
    "nutrition research (new york, n.y.)": "Nutrition Research",
    "sensors (basel, switzerland)": "Sensors",
    "experimental biology and medicine (maywood, n.j.)": "Experimental Biology and Medicine",
    "medical devices (auckland, n.z.)": "Medical Devices",
    "journal of applied physiology (bethesda, md. : 1985)": "Journal of Applied Physiology",

    # " : " subtitles and acronym suffixes
    "clinical journal of the american society of nephrology : cjasn": "Clinical Journal of the American Society of Nephrology",
    "journal of the american society of nephrology : jasn": "Journal of the American Society of Nephrology",
    "journal of alzheimer's disease : jad": "Journal of Alzheimer's Disease",
    "journal of clinical sleep medicine : jcsm : official publication of the american academy of sleep medicine": "Journal of Clinical Sleep Medicine",
    "archives of medical science : ams": "Archives of Medical Science",
    "autonomic neuroscience : basic & clinical": "Autonomic Neuroscience",
    "asaio journal (american society for artificial internal organs : 1992)": "ASAIO Journal",
    "biologics : targets & therapy": "Biologics: Targets & Therapy",
    "clinical autonomic research : official journal of the clinical autonomic research society": "Clinical Autonomic Research",
    "clinical pharmacology : advances and applications": "Clinical Pharmacology: Advances and Applications",
    "diabetes & vascular disease research : official journal of the international society of diabetes and vascular disease": "Diabetes & Vascular Disease Research",
    "electrolytes & blood pressure : e & bp": "Electrolytes & Blood Pressure",
    "evidence-based complementary and alternative medicine : ecam": "Evidence-Based Complementary and Alternative Medicine",
    "health psychology : official journal of the division of health psychology, american psychological association": "Health Psychology",
    "immunity & ageing : i & a": "Immunity & Ageing",
    "international journal of psychophysiology : official journal of the international organization of psychophysiology": "International Journal of Psychophysiology",
    "journal of clinical and diagnostic research : jcdr": "Journal of Clinical and Diagnostic Research",
    "journal of geriatric cardiology : jgc": "Journal of Geriatric Cardiology",
    "journal of pediatric endocrinology & metabolism : jpem": "Journal of Pediatric Endocrinology & Metabolism",
    "journal of psychiatry & neuroscience : jpn": "Journal of Psychiatry & Neuroscience",
    "journal of renal nutrition : the official journal of the council on renal nutrition of the national kidney foundation": "Journal of Renal Nutrition",
    "journal of the american association for laboratory animal science : jaalas": "Journal of the American Association for Laboratory Animal Science",
    "journal of the american society of echocardiography : official publication of the american society of echocardiography": "Journal of the American Society of Echocardiography",
    "journal of the american society of hypertension : jash": "Journal of the American Society of Hypertension",
    "journal of the peripheral nervous system : jpns": "Journal of the Peripheral Nervous System",
    "journal of visualized experiments : jove": "Journal of Visualized Experiments",
    "medical science monitor : international medical journal of experimental and clinical research": "Medical Science Monitor",
    "neuroimage : clinical": "NeuroImage: Clinical",
    "nitric oxide : biology and chemistry": "Nitric Oxide",
    "peritoneal dialysis international : journal of the international society for peritoneal dialysis": "Peritoneal Dialysis International",
    "the international journal of angiology : official publication of the international college of angiology, inc": "The International Journal of Angiology",
    "the journal of physiological sciences : jps": "The Journal of Physiological Sciences",
    "twin research and human genetics : the official journal of the international society for twin studies": "Twin Research and Human Genetics",

    # american journal of physiology family
    "american journal of physiology. heart and circulatory physiology": "American Journal of Physiology - Heart and Circulatory Physiology",
    "american journal of physiology. renal physiology": "American Journal of Physiology - Renal Physiology",
    "american journal of physiology. regulatory, integrative and comparative physiology": "American Journal of Physiology - Regulatory, Integrative and Comparative Physiology",
    "american journal of physiology. cell physiology": "American Journal of Physiology - Cell Physiology",
    "american journal of physiology. endocrinology and metabolism": "American Journal of Physiology - Endocrinology and Metabolism",

    # other
    "american journal of kidney diseases : the official journal of the national kidney foundation": "American Journal of Kidney Diseases",
    "american journal of human biology : the official journal of the human biology council": "American Journal of Human Biology",
    "arthritis & rheumatology (hoboken, n.j.)": "Arthritis & Rheumatology",
    "arteriosclerosis, thrombosis, and vascular biology": "Arteriosclerosis, Thrombosis, and Vascular Biology",

    # JACC family
    "jacc. cardiovascular imaging": "JACC: Cardiovascular Imaging",
    "jacc. heart failure": "JACC: Heart Failure",
    "jacc: basic to translational science": "JACC: Basic to Translational Science",
    "jacc: advances": "JACC: Advances",

    # european heart journal family
    "european heart journal. digital health": "European Heart Journal - Digital Health",

    # alzheimer's family
    "alzheimer's & dementia : diagnosis, assessment & disease monitoring": "Alzheimer's & Dementia: Diagnosis, Assessment & Disease Monitoring",
    "alzheimer's & dementia : translational research & clinical interventions": "Alzheimer's & Dementia: Translational Research & Clinical Interventions",
}


def _group(parent: str, *children: str) -> JournalGroup:
    return JournalGroup(parent=parent, children=frozenset(children))


JOURNAL_GROUPS: Tuple[JournalGroup, ...] = (
    _group(
        "BMJ",
        "BMJ Open",
        "BMJ Case Reports",
        "BMJ Open Diabetes Research & Care",
        "BMJ Open Sport — Exercise Medicine",
        "BMJ Paediatrics Open",
        "BMJ Public Health",
        "Open Heart",
        "Heart Asia",
    ),
    _group(
        "BMC",
        "BMC Anesthesiology",
        "BMC Cancer",
        "BMC Cardiovascular Disorders",
        "BMC Complementary Medicine and Therapies",
        "BMC Complementary and Alternative Medicine",
        "BMC Endocrine Disorders",
        "BMC Geriatrics",
        "BMC Infectious Diseases",
        "BMC Medicine",
        "BMC Musculoskeletal Disorders",
        "BMC Nephrology",
        "BMC Neurology",
        "BMC Oral Health",
        "BMC Pediatrics",
        "BMC Pregnancy and Childbirth",
        "BMC Public Health",
        "BMC Pulmonary Medicine",
        "BMC Research Notes",
        "BMC Rheumatology",
        "BMC Sports Science, Medicine and Rehabilitation",
        "BMC Women's Health",
    ),
    _group(
        "American Journal of Physiology",
        "American Journal of Physiology - Cell Physiology",
        "American Journal of Physiology - Endocrinology and Metabolism",
        "American Journal of Physiology - Heart and Circulatory Physiology",
        "American Journal of Physiology - Regulatory, Integrative and Comparative Physiology",
        "American Journal of Physiology - Renal Physiology",
    ),
    _group(
        "Frontiers",
        "Frontiers in Cardiovascular Medicine",
        "Frontiers in Physiology",
        "Frontiers in Endocrinology",
        "Frontiers in Medicine",
        "Frontiers in Aging Neuroscience",
        "Frontiers in Neurology",
        "Frontiers in Public Health",
        "Frontiers in Pediatrics",
        "Frontiers in Pharmacology",
        "Frontiers in Immunology",
        "Frontiers in Nutrition",
        "Frontiers in Human Neuroscience",
        "Frontiers in Sports and Active Living",
        "Frontiers in Aging",
        "Frontiers in Nephrology",
        "Frontiers in Genetics",
        "Frontiers in Cellular and Infection Microbiology",
        "Frontiers in Clinical Diabetes and Healthcare",
        "Frontiers in Artificial Intelligence",
        "Frontiers in Molecular Biosciences",
        "Frontiers in Psychology",
    ),
    _group(
        "Alzheimer's & Dementia",
        "Alzheimer's & Dementia: Diagnosis, Assessment & Disease Monitoring",
        "Alzheimer's & Dementia: Translational Research & Clinical Interventions",
    ),
    _group(
        "Circulation",
        "Circulation Research",
        "Circulation: Heart Failure",
        "Circulation: Cardiovascular Imaging",
        "Circulation: Cardiovascular Quality and Outcomes",
    ),
    _group(
        "JACC",
        "JACC: Advances",
        "JACC: Basic to Translational Science",
        "JACC: Cardiovascular Imaging",
        "JACC: Heart Failure",
    ),
    _group(
        "European Heart Journal",
        "European Heart Journal - Digital Health",
        "European Heart Journal Open",
    ),
    _group(
        "ASN Journals",
        "Journal of the American Society of Nephrology",
        "Clinical Journal of the American Society of Nephrology",
    ),
    _group(
        "PLOS",
        "PLOS ONE",
        "PLOS Computational Biology",
        "PLOS Medicine",
    ),
)


def normalize_journal_name(journal: Optional[str]) -> str:
    """Canonical name for a known variant, otherwise the trimmed input."""
    if not isinstance(journal, str):
        return ""
    trimmed = journal.strip()
    return JOURNAL_NORMALIZATIONS.get(trimmed.lower(), trimmed)


def find_parent_group(journal: Optional[str]) -> Optional[JournalGroup]:
    normalized = normalize_journal_name(journal)
    if not normalized:
        return None
    for group in JOURNAL_GROUPS:
        if group.parent == normalized or normalized in group.children:
            return group
    return None


def is_parent_journal(journal: Optional[str]) -> bool:
    normalized = normalize_journal_name(journal)
    return any(group.parent == normalized for group in JOURNAL_GROUPS)


def get_child_journals(parent: Optional[str]) -> List[str]:
    normalized = normalize_journal_name(parent)
    for group in JOURNAL_GROUPS:
        if group.parent == normalized:
            return sorted(group.children)
    return []


def aggregate_journal_counts(counts: Mapping[str, int]) -> Dict[str, int]:
    """Merge per-raw-name counts (e.g. venue facets) under canonical names."""
    merged: Counter[str] = Counter()
    for raw, n in counts.items():
        name = normalize_journal_name(raw)
        if name:
            merged[name] += int(n or 0)
    return dict(merged)


def group_journal_counts(counts: Mapping[str, int]) -> Dict[str, int]:
    """Roll canonical counts up to family parents; ungrouped names stay as-is."""
    rolled: Counter[str] = Counter()
    for name, n in aggregate_journal_counts(counts).items():
        group = find_parent_group(name)
        rolled[group.parent if group else name] += n
    return dict(rolled)


def validate_journal_groups(groups: Iterable[JournalGroup] = JOURNAL_GROUPS) -> List[str]:
    """Return a list of table-invariant violations (empty when the table is sound)."""
    problems: List[str] = []
    groups = list(groups)
    owner: Dict[str, str] = {}
    parents = {g.parent for g in groups}
    for g in groups:
        for child in g.children:
            if child in owner and owner[child] != g.parent:
                problems.append(f"{child!r} is a child of both {owner[child]!r} and {g.parent!r}")
            owner[child] = g.parent
            if child in parents:
                problems.append(f"{child!r} is a parent and also a child of {g.parent!r}")
    for variant, canonical in JOURNAL_NORMALIZATIONS.items():
        if variant != variant.lower():
            problems.append(f"variant key {variant!r} is not lowercase")
        if canonical != canonical.strip():
            problems.append(f"canonical name {canonical!r} has surrounding whitespace")
    return problems
