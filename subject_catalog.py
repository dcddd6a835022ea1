"""
Subject catalog for the result engine.

A catalog is the ordered list of subjects a school grades, with one subject
optionally flagged compulsory. Schools may rename, reorder, disable or add
subjects, so the engine never hard-codes subject keys.
"""

import re
from collections import namedtuple


Subject = namedtuple('Subject', ['key', 'name', 'compulsory', 'active', 'order'])

DEFAULT_SUBJECTS = [
    ('eng', 'English'),
    ('mat', 'Mathematics'),
    ('phy', 'Physics'),
    ('che', 'Chemistry'),
    ('bio', 'Biology'),
    ('geo', 'Geography'),
    ('his', 'History'),
    ('chi', 'Chichewa'),
    ('agr', 'Agriculture'),
    ('soc', 'Social Studies'),
    ('bk', 'Bible Knowledge'),
]
DEFAULT_COMPULSORY_KEY = 'eng'


def canonicalize_classname(value):
    """Class name as used in class-level sets and roster keys: 'Form 1' -> 'FORM1'."""
    return re.sub(r'[^A-Za-z0-9]+', '', (value or '').strip()).upper()


def normalize_subject_key(value):
    return re.sub(r'[^A-Za-z0-9]+', '_', (value or '').strip()).strip('_').lower()


def normalize_subject_name(value):
    """Display name for a subject row; short all-caps words such as 'ICT' are kept."""
    words = (value or '').split()
    return ' '.join(
        word if word.isupper() and len(word) <= 4 else word.capitalize()
        for word in words
    )


def _as_bool(value, default):
    if value is None:
        return default
    if isinstance(value, str):
        return value.strip().lower() in ('1', 'true', 'yes', 'y')
    return bool(value)


class SubjectCatalog:
    """Ordered, validated set of subjects with an optional compulsory entry."""

    def __init__(self, subjects):
        subjects = [s if s.order is not None else s._replace(order=index) for index, s in enumerate(subjects)]
        subjects = sorted(subjects, key=lambda s: s.order)
        seen = set()
        compulsory = []
        for subject in subjects:
            if not subject.key:
                raise ValueError(f'Subject "{subject.name}" has no key.')
            if subject.key in seen:
                raise ValueError(f'Duplicate subject key "{subject.key}" in catalog.')
            seen.add(subject.key)
            if subject.compulsory and subject.active:
                compulsory.append(subject.key)
        if len(compulsory) > 1:
            raise ValueError(f'Only one compulsory subject is allowed, got: {", ".join(compulsory)}.')
        self.subjects = tuple(subjects)
        self.compulsory_key = compulsory[0] if compulsory else None

    @classmethod
    def default(cls):
        return cls(
            Subject(key, name, key == DEFAULT_COMPULSORY_KEY, True, index)
            for index, (key, name) in enumerate(DEFAULT_SUBJECTS)
        )

    @classmethod
    def from_rows(cls, rows):
        """
        Build a catalog from stored subject rows.

        Each row is a mapping with `name` and optionally `abbreviation`,
        `display_order`, `is_active` and `is_compulsory`. The key is the
        abbreviation when given, otherwise derived from the name.
        """
        subjects = []
        for index, row in enumerate(rows):
            name = normalize_subject_name(row.get('name', ''))
            key = normalize_subject_key(row.get('abbreviation') or name)
            order = row.get('display_order')
            subjects.append(Subject(
                key=key,
                name=name or key,
                compulsory=_as_bool(row.get('is_compulsory'), False),
                active=_as_bool(row.get('is_active'), True),
                order=index if order is None else int(order),
            ))
        return cls(subjects)

    def active_subjects(self):
        return [s for s in self.subjects if s.active]

    def keys(self):
        """Active subject keys in display order."""
        return [s.key for s in self.subjects if s.active]

    def name_for(self, key):
        for subject in self.subjects:
            if subject.key == key:
                return subject.name
        return key

    def lookup(self, label):
        """Find the active subject key matching a column header by key or name."""
        wanted = (label or '').strip().lower()
        if not wanted:
            return None
        for subject in self.active_subjects():
            if wanted == subject.key or wanted == subject.name.lower():
                return subject.key
        return None

    def __contains__(self, key):
        return key in self.keys()

    def __len__(self):
        return len(self.keys())

    def __iter__(self):
        return iter(self.active_subjects())

    def __repr__(self):
        return f"SubjectCatalog(keys={self.keys()}, compulsory={self.compulsory_key!r})"
