"""
Process a class result sheet from a CSV of raw marks.

Usage:
  python process_results.py marks.csv -o results.csv

Optional:
  python process_results.py marks.csv --class "Form 3" --year 2025 --term Term1
  python process_results.py marks.csv --subjects subjects.json

The CSV needs a Name column and one column per subject (header is the subject
key or name). Class, Year and Term columns may be replaced by the matching
command-line options when the whole sheet is one class.
"""

import argparse
import csv
import json
import logging
import sys
from io import StringIO
from typing import Dict, List, Optional, Sequence

import student_result
from subject_catalog import SubjectCatalog

IDENTITY_COLUMNS = {
    'student id': 'student_id',
    'name': 'name',
    'sex': 'sex',
    'class': 'classname',
    'year': 'year',
    'term': 'term',
}
GROUP_OPTIONS = {'classname': 'class', 'year': 'year', 'term': 'term'}


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Grade and rank a class result sheet.")
    parser.add_argument("csv_path", help="CSV file of raw marks")
    parser.add_argument("-o", "--output", default="", help="Where to write the processed CSV (default: stdout)")
    parser.add_argument("--subjects", default="", help="JSON file of subject rows to use instead of the default catalog")
    parser.add_argument("--class", dest="classname", default="", help="Class for rows without a Class column")
    parser.add_argument("--year", default="", help="Year for rows without a Year column")
    parser.add_argument("--term", default="", help="Term for rows without a Term column")
    return parser.parse_args(argv)


def load_catalog(path: str) -> SubjectCatalog:
    if not path:
        return SubjectCatalog.default()
    with open(path, encoding="utf-8") as fh:
        rows = json.load(fh)
    if not isinstance(rows, list):
        raise ValueError(f"{path}: subject file must hold a JSON list of subject rows.")
    return SubjectCatalog.from_rows(rows)


def read_marks_csv(content: str, catalog: SubjectCatalog, defaults: Optional[Dict[str, str]] = None) -> List[dict]:
    """Turn CSV text into raw student records; marks stay as raw cells."""
    defaults = defaults or {}
    reader = csv.DictReader(StringIO(content))
    if not reader.fieldnames:
        raise ValueError("CSV is empty or has no header row.")

    identity = {}
    subjects = {}
    for header in reader.fieldnames:
        if not header:
            continue
        label = header.strip().lower()
        if label in IDENTITY_COLUMNS:
            identity[IDENTITY_COLUMNS[label]] = header
            continue
        key = catalog.lookup(header)
        if not key:
            continue
        if key in subjects:
            raise ValueError(f'Columns "{subjects[key]}" and "{header}" both hold {catalog.name_for(key)} marks.')
        subjects[key] = header

    if 'name' not in identity:
        raise ValueError('CSV must include a "Name" column.')
    for field, option in GROUP_OPTIONS.items():
        if field not in identity and not defaults.get(field):
            raise ValueError(f'CSV has no "{option.title()}" column; pass --{option}.')
    if not subjects:
        raise ValueError("CSV has no subject columns matching the subject catalog.")

    records = []
    for row_num, row in enumerate(reader, start=2):
        name = (row.get(identity['name']) or '').strip()
        if not name:
            continue
        record = {}
        for field, header in identity.items():
            record[field] = (row.get(header) or '').strip()
        for field in GROUP_OPTIONS:
            if not record.get(field):
                if not defaults.get(field):
                    raise ValueError(f"Row {row_num}: {name} has no {GROUP_OPTIONS[field]}.")
                record[field] = defaults[field]
        record['marks'] = {key: row.get(header) for key, header in subjects.items()}
        records.append(record)
    return records


def result_rows(roster: List[dict], catalog: SubjectCatalog) -> List[List]:
    header = ["Rank", "Student ID", "Name", "Sex", "Class", "Year", "Term"]
    for subject in catalog:
        header.extend([f"{subject.name} Mark", f"{subject.name} Grade", f"{subject.name} Pos", f"{subject.name} Remark"])
    header.extend(["Total", "Average", "Passed", "Status"])

    rows = [header]
    for record in roster:
        row = [
            student_result.ordinal(record['rank']),
            record.get('student_id', ''),
            record.get('name', ''),
            record.get('sex', ''),
            record.get('classname', ''),
            record.get('year', ''),
            record.get('term', ''),
        ]
        for key in catalog.keys():
            grade = record['grades'][key]
            row.extend([record['marks'][key], grade['grade'], grade['pos'] or '-', grade['remark']])
        row.extend([record['total'], record['average'], record['pass_count'], record['status']])
        rows.append(row)
    return rows


def write_results(groups: Dict[tuple, List[dict]], catalog: SubjectCatalog, out) -> None:
    writer = csv.writer(out)
    for (classname, year, term), roster in groups.items():
        rows = result_rows(roster, catalog)
        writer.writerows(rows)
        level = student_result.class_level(classname)
        writer.writerow([student_result.grading_legend(level)])
        writer.writerow([])


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    student_result.configure_logging()
    defaults = {'classname': args.classname, 'year': args.year, 'term': args.term}

    try:
        catalog = load_catalog(args.subjects)
        with open(args.csv_path, encoding="utf-8-sig", newline="") as fh:
            records = read_marks_csv(fh.read(), catalog, defaults)
        groups = student_result.process_students(records, catalog)
        if args.output:
            with open(args.output, "w", encoding="utf-8", newline="") as out:
                write_results(groups, catalog, out)
        else:
            write_results(groups, catalog, sys.stdout)
    except (ValueError, OSError) as e:
        logging.exception("Result processing failed for %s", args.csv_path)
        print(f"✗ {e}", file=sys.stderr)
        return 1

    for (classname, year, term), roster in groups.items():
        passed = sum(1 for record in roster if record['status'] == 'PASS')
        print(f"✓ {classname} {year} {term}: {len(roster)} students, {passed} passed", file=sys.stderr)
    return 0


if __name__ == "__main__":
    sys.exit(main())
