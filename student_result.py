"""
Student Result Engine

Grades raw subject marks for a class roster, totals each student on the
best-six rule with a compulsory subject, and assigns the overall class
position and per-subject positions used on the end-of-term result sheet.

Every function here is a pure transformation: input records are never
mutated, and the whole pipeline is re-run whenever a mark changes.
"""

import logging
import math
import os

from dotenv import load_dotenv

from subject_catalog import SubjectCatalog, canonicalize_classname

load_dotenv()


def _env_int(name, default, minimum=0):
    raw = os.environ.get(name, '').strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        raise RuntimeError(f"{name} must be an integer, got {raw!r}.")
    if value < minimum:
        raise RuntimeError(f"{name} must be at least {minimum}, got {value}.")
    return value


def _env_classes(name, default):
    raw = os.environ.get(name, '').strip() or default
    return frozenset(canonicalize_classname(c) for c in raw.split(',') if c.strip())


JUNIOR_CLASSES = _env_classes('RESULT_JUNIOR_CLASSES', 'FORM1,FORM2')
SENIOR_CLASSES = _env_classes('RESULT_SENIOR_CLASSES', 'FORM3,FORM4')
if JUNIOR_CLASSES & SENIOR_CLASSES:
    raise RuntimeError(
        "RESULT_JUNIOR_CLASSES and RESULT_SENIOR_CLASSES overlap: "
        f"{', '.join(sorted(JUNIOR_CLASSES & SENIOR_CLASSES))}."
    )
PASS_MARK = _env_int('RESULT_PASS_MARK', 40)
BEST_OF = _env_int('RESULT_BEST_OF', 6, minimum=1)
MIN_PASSED_SUBJECTS = _env_int('RESULT_MIN_PASSED_SUBJECTS', 6, minimum=1)
if MIN_PASSED_SUBJECTS > BEST_OF:
    raise RuntimeError(
        f"RESULT_MIN_PASSED_SUBJECTS ({MIN_PASSED_SUBJECTS}) cannot exceed RESULT_BEST_OF ({BEST_OF}); "
        "nobody could pass."
    )
OUT_OF_RANGE = (os.environ.get('RESULT_OUT_OF_RANGE', '') or 'keep').strip().lower()
if OUT_OF_RANGE not in ('keep', 'clamp'):
    raise RuntimeError(f"RESULT_OUT_OF_RANGE must be 'keep' or 'clamp', got {OUT_OF_RANGE!r}.")
LOG_FILE = os.environ.get('RESULT_LOG_FILE', 'result.log').strip() or 'result.log'
LOG_LEVEL = (os.environ.get('RESULT_LOG_LEVEL', '') or 'INFO').strip().upper()

ABSENT = 'AB'
JUNIOR = 'junior'
SENIOR = 'senior'
MARK_MIN = 0
MARK_MAX = 100

# (min_mark, grade, remark), highest band first; the last band catches everything below.
JUNIOR_GRADES = [
    (90, 'A', 'Excellent'),
    (80, 'B', 'Very good'),
    (60, 'C', 'Good'),
    (40, 'D', 'Pass'),
    (0, 'F', 'Fail'),
]
SENIOR_GRADES = [
    (85, '1', 'Distinction'),
    (75, '2', 'Distinction'),
    (70, '3', 'Strong Credit'),
    (60, '4', 'Credit'),
    (55, '5', 'Credit'),
    (50, '6', 'Credit'),
    (45, '7', 'Pass'),
    (40, '8', 'Pass'),
    (0, '9', 'Fail'),
]
GRADE_TABLES = {JUNIOR: JUNIOR_GRADES, SENIOR: SENIOR_GRADES}

DERIVED_FIELDS = ('grades', 'total', 'average', 'pass_count', 'compulsory_passed', 'status', 'rank')


def configure_logging(filename=None, level=None):
    """Set up file logging for scripts that drive the engine."""
    logging.basicConfig(
        filename=filename or LOG_FILE,
        level=getattr(logging, level or LOG_LEVEL, logging.INFO),
        format='%(asctime)s - %(levelname)s - %(message)s',
    )


# ==================== MARK NORMALIZATION ====================

def round_half_up(value):
    """Round to the nearest integer, halves away from zero."""
    return int(math.copysign(math.floor(abs(value) + 0.5), value))


def is_present(mark):
    return isinstance(mark, (int, float)) and not isinstance(mark, bool)


def normalize_mark(value):
    """Turn one raw cell into an integer mark or ABSENT."""
    if value is None or isinstance(value, bool):
        return ABSENT
    text = str(value).strip()
    if not text or text.lower() in ('ab', 'absent'):
        return ABSENT
    # float() also takes digit separators and non-Latin digits.
    if '_' in text or not text.isascii():
        return ABSENT
    try:
        number = float(text)
    except ValueError:
        return ABSENT
    if not math.isfinite(number):
        return ABSENT

    mark = round_half_up(number)
    if mark < MARK_MIN or mark > MARK_MAX:
        if OUT_OF_RANGE == 'clamp':
            logging.warning("Mark %s is outside %s-%s; clamped.", mark, MARK_MIN, MARK_MAX)
            mark = min(MARK_MAX, max(MARK_MIN, mark))
        else:
            logging.warning("Mark %s is outside %s-%s; kept as entered.", mark, MARK_MIN, MARK_MAX)
    # Zero is the "no data" placeholder, never a real score.
    if mark == 0:
        return ABSENT
    return mark


def normalize_marks(raw_marks, catalog):
    """Build a full mark set for the catalog's active subjects."""
    raw_marks = raw_marks or {}
    return {key: normalize_mark(raw_marks.get(key)) for key in catalog.keys()}


# ==================== GRADE CLASSIFICATION ====================

def class_level(classname):
    """Map a class name to its grading level: junior or senior."""
    key = canonicalize_classname(classname)
    if key in JUNIOR_CLASSES:
        return JUNIOR
    if key not in SENIOR_CLASSES:
        logging.warning("Class %r is not a configured junior or senior class; grading as senior.", classname)
    return SENIOR


def classify_mark(mark, level):
    """Get (grade, remark) for one mark at the given level."""
    if not is_present(mark):
        return ABSENT, 'Absent'
    table = GRADE_TABLES[level]
    for minimum, grade, remark in table:
        if mark >= minimum:
            return grade, remark
    _, grade, remark = table[-1]
    return grade, remark


def calculate_grades(marks, level, catalog):
    grades = {}
    for key in catalog.keys():
        grade, remark = classify_mark(marks.get(key, ABSENT), level)
        grades[key] = {'grade': grade, 'pos': 0, 'remark': remark}
    return grades


def passing_grades(level):
    """Grade labels that count as a pass at the given level."""
    return [grade for _, grade, remark in GRADE_TABLES[level] if remark != 'Fail']


def grading_legend(level):
    """Grading scale line printed under result sheets for the level."""
    table = GRADE_TABLES[level]
    parts = []
    upper = MARK_MAX
    for minimum, grade, remark in table:
        parts.append(f"{grade}={minimum}-{upper} ({remark})")
        upper = minimum - 1
    return "Grading Scale: " + ", ".join(parts)


# ==================== SCORE AGGREGATION ====================

def best_subjects(marks, catalog):
    """
    Select the subjects that count towards a student's total.

    With the compulsory subject present the selection is that subject plus
    the best BEST_OF - 1 others; otherwise it is the best BEST_OF subjects.
    Equal marks keep catalog order.
    """
    present = [(key, marks.get(key, ABSENT)) for key in catalog.keys()]
    present = [(key, mark) for key, mark in present if is_present(mark)]
    present.sort(key=lambda item: item[1], reverse=True)

    compulsory = catalog.compulsory_key
    chosen = [item for item in present if item[0] == compulsory]
    if chosen:
        others = [item for item in present if item[0] != compulsory]
        return chosen + others[:BEST_OF - 1]
    return present[:BEST_OF]


def compulsory_passed(marks, catalog):
    compulsory = catalog.compulsory_key
    if compulsory is None:
        return True
    mark = marks.get(compulsory, ABSENT)
    return is_present(mark) and mark >= PASS_MARK


def calculate_average(marks, catalog):
    values = [marks.get(key, ABSENT) for key in catalog.keys()]
    values = [mark for mark in values if is_present(mark)]
    if not values:
        return 0
    return round_half_up(sum(values) / len(values))


def aggregate_marks(marks, catalog):
    """Total, pass count, compulsory pass, status and average for one mark set."""
    selection = best_subjects(marks, catalog)
    pass_count = sum(1 for _, mark in selection if mark >= PASS_MARK)
    passed_compulsory = compulsory_passed(marks, catalog)
    status = 'PASS' if pass_count >= MIN_PASSED_SUBJECTS and passed_compulsory else 'FAIL'
    return {
        'total': sum(mark for _, mark in selection),
        'pass_count': pass_count,
        'compulsory_passed': passed_compulsory,
        'status': status,
        'average': calculate_average(marks, catalog),
    }


# ==================== RANKING ====================

def dense_rank(items, key):
    """
    Rank items by key, highest first, sharing ranks between equal keys.

    Returns (item, rank) pairs in ranked order. A tie group's rank is the
    1-based position of its first member, so ranks run 1, 1, 3, 4, 4, 4, 7.
    Equal keys keep their input order.
    """
    ordered = sorted(items, key=key, reverse=True)
    ranked = []
    prev_key = None
    current_rank = 0
    for index, item in enumerate(ordered, 1):
        item_key = key(item)
        if index == 1 or item_key != prev_key:
            current_rank = index
        ranked.append((item, current_rank))
        prev_key = item_key
    return ranked


def _ranking_key(record):
    return (record['compulsory_passed'], record['pass_count'], record['total'])


def rank_roster(roster, catalog):
    """Assign overall class positions; returns new records in rank order."""
    summarised = []
    for record in roster:
        summary = aggregate_marks(record.get('marks') or {}, catalog)
        summarised.append(dict(record, **summary))
    return [dict(record, rank=rank) for record, rank in dense_rank(summarised, _ranking_key)]


def subject_positions(roster, subject):
    """Positions in one subject, aligned with the roster; absent students get 0."""
    positions = [0] * len(roster)
    present = []
    for index, record in enumerate(roster):
        mark = (record.get('marks') or {}).get(subject, ABSENT)
        if is_present(mark):
            present.append((index, mark))
    for (index, _), position in dense_rank(present, key=lambda item: item[1]):
        positions[index] = position
    return positions


def assign_subject_positions(roster, catalog):
    """Return new records with each subject grade's position filled in."""
    by_subject = {key: subject_positions(roster, key) for key in catalog.keys()}
    updated = []
    for index, record in enumerate(roster):
        grades = record.get('grades')
        if grades is None:
            level = class_level(record.get('classname'))
            grades = calculate_grades(record.get('marks') or {}, level, catalog)
        new_grades = {}
        for key in catalog.keys():
            entry = dict(grades.get(key) or {'grade': ABSENT, 'remark': 'Absent'})
            entry['pos'] = by_subject[key][index]
            new_grades[key] = entry
        updated.append(dict(record, grades=new_grades))
    return updated


# ==================== PIPELINE ====================

def process_roster(roster, catalog=None):
    """Run the full pipeline over one class/year/term roster."""
    if catalog is None:
        catalog = SubjectCatalog.default()
    graded = []
    for record in roster:
        fresh = {k: v for k, v in record.items() if k not in DERIVED_FIELDS}
        marks = normalize_marks(record.get('marks'), catalog)
        level = class_level(record.get('classname'))
        fresh['marks'] = marks
        fresh['grades'] = calculate_grades(marks, level, catalog)
        graded.append(fresh)

    ranked = rank_roster(graded, catalog)
    processed = assign_subject_positions(ranked, catalog)
    if processed:
        first = processed[0]
        logging.info(
            "Processed %s students for %s %s %s",
            len(processed), first.get('classname'), first.get('year'), first.get('term'),
        )
    return processed


def roster_key(record):
    return (
        canonicalize_classname(record.get('classname')),
        str(record.get('year') or '').strip(),
        str(record.get('term') or '').strip(),
    )


def process_students(records, catalog=None):
    """Group records by class/year/term and process each group separately."""
    if catalog is None:
        catalog = SubjectCatalog.default()
    groups = {}
    for record in records:
        groups.setdefault(roster_key(record), []).append(record)
    return {key: process_roster(group, catalog) for key, group in groups.items()}


# ==================== STATISTICS & DISPLAY ====================

def grade_distribution(roster, subject, level):
    """Count of each grade label in one subject; absent students are not counted."""
    distribution = {grade: 0 for _, grade, _ in GRADE_TABLES[level]}
    for record in roster:
        mark = (record.get('marks') or {}).get(subject, ABSENT)
        if not is_present(mark):
            continue
        grade, _ = classify_mark(mark, level)
        distribution[grade] += 1
    return distribution


def subject_statistics(roster, catalog=None):
    if catalog is None:
        catalog = SubjectCatalog.default()
    level = class_level(roster[0].get('classname')) if roster else SENIOR
    stats = {}
    for key in catalog.keys():
        marks = [(record.get('marks') or {}).get(key, ABSENT) for record in roster]
        sat = [mark for mark in marks if is_present(mark)]
        stats[key] = {
            'name': catalog.name_for(key),
            'sat': len(sat),
            'absent': len(marks) - len(sat),
            'highest': max(sat) if sat else None,
            'lowest': min(sat) if sat else None,
            'mean': round(sum(sat) / len(sat), 1) if sat else None,
            'passed': sum(1 for mark in sat if mark >= PASS_MARK),
            'distribution': grade_distribution(roster, key, level),
        }
    return stats


def ordinal(value):
    """Printed position for a rank, e.g. 2 -> "2nd". Non-numbers pass through."""
    try:
        rank = int(value)
    except (TypeError, ValueError):
        return str(value)
    # 11th, 12th and 13th break the last-digit rule.
    if abs(rank) % 100 in (11, 12, 13):
        return f"{rank}th"
    suffix = {1: 'st', 2: 'nd', 3: 'rd'}.get(abs(rank) % 10, 'th')
    return f"{rank}{suffix}"
