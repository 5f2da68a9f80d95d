"""Question-file parsers for practice material.

Supported input types: JSON, CSV, TXT, PDF and DOCX. Parsers return a
list of dictionaries shaped like the practice question payload:
`title`, `content`, `type`, `difficulty`, `points`, `explanation` and
`options` (each `{text, is_correct}`).

Text-based formats use blocks separated by blank lines. A block is either
`question|answer1|answer2...` or one line for the question followed by
one line per answer. Correct answers are marked with a leading `*` or a
trailing `(correct)`; when no answer is marked the first one is assumed
correct.
"""

import csv
import io
import json
from typing import Dict, List, Optional, Tuple

import docx
import pdfplumber

SUPPORTED_EXTENSIONS = ('.json', '.csv', '.txt', '.pdf', '.docx')


def parse_file_to_questions(file_bytes: bytes, filename: str) -> List[Dict]:
    """Dispatch to the appropriate parser based on file extension."""
    name = filename.lower()
    if name.endswith('.json'):
        return parse_json(file_bytes)
    if name.endswith('.csv'):
        return parse_csv(file_bytes)
    if name.endswith('.txt'):
        return parse_txt(file_bytes)
    if name.endswith('.pdf'):
        return parse_pdf(file_bytes)
    if name.endswith('.docx'):
        return parse_docx(file_bytes)
    raise ValueError('Unsupported file type')


def parse_json(b: bytes) -> List[Dict]:
    """Parse a JSON array of question objects and normalize them."""
    data = json.loads(b.decode('utf-8'))
    if isinstance(data, dict):
        data = data.get('questions') or []
    return [normalize_question(item) for item in data if isinstance(item, dict)]


def parse_csv(b: bytes) -> List[Dict]:
    """Parse a CSV where one column holds pipe-separated answers.

    Columns: `question` (or `content`), optional `title`, `answers`
    (pipe separated), `correct`, `explanation`, `difficulty`, `points`.
    """
    out = []
    reader = csv.DictReader(io.StringIO(b.decode('utf-8-sig')))
    for row in reader:
        content = str(row.get('question') or row.get('content') or '').strip()
        correct = (row.get('correct') or '').strip()
        options = []
        for part in (row.get('answers') or '').split('|'):
            if not part.strip():
                continue
            text, marked = _parse_answer_line(part)
            options.append({'text': text, 'is_correct': marked or (bool(correct) and text == correct)})
        out.append(_question(
            content,
            options,
            title=row.get('title'),
            explanation=row.get('explanation'),
            difficulty=row.get('difficulty'),
            points=_coerce_int(row.get('points')),
        ))
    return out


def parse_txt(b: bytes) -> List[Dict]:
    """Parse plaintext question blocks separated by blank lines."""
    return _parse_blocks(_split_blocks(b.decode('utf-8')))


def parse_pdf(b: bytes) -> List[Dict]:
    """Extract text from PDF pages and parse the resulting blocks."""
    text_parts = []
    with pdfplumber.open(io.BytesIO(b)) as pdf:
        for page in pdf.pages:
            text_parts.append(page.extract_text() or '')
    return _parse_blocks(_split_blocks('\n'.join(text_parts)))


def parse_docx(b: bytes) -> List[Dict]:
    """Parse a DOCX document; empty paragraphs separate question blocks."""
    doc = docx.Document(io.BytesIO(b))
    blocks = []
    current = []
    for p in doc.paragraphs:
        text = (p.text or '').strip()
        if not text:
            if current:
                blocks.append('\n'.join(current))
                current = []
            continue
        current.append(text)
    if current:
        blocks.append('\n'.join(current))
    return _parse_blocks(blocks)


def normalize_question(item: dict) -> dict:
    """Map alternative keys of a JSON question onto the canonical shape."""
    content = item.get('content') or item.get('question') or item.get('question_text') or ''
    raw_options = item.get('options') or item.get('answers') or item.get('possible_answers') or []
    correct = item.get('correct_answer') or item.get('correct')
    options = []
    for opt in raw_options:
        if isinstance(opt, str):
            text, marked = _parse_answer_line(opt)
            options.append({'text': text, 'is_correct': marked or (correct is not None and text == str(correct))})
        elif isinstance(opt, dict):
            text = str(opt.get('text') or opt.get('answer_text') or '').strip()
            options.append({
                'text': text,
                'is_correct': bool(opt.get('is_correct') or opt.get('isCorrect')),
                'explanation': opt.get('explanation'),
            })
    return _question(
        str(content),
        options,
        title=item.get('title'),
        explanation=item.get('explanation') or item.get('solution'),
        difficulty=item.get('difficulty'),
        points=_coerce_int(item.get('points')),
        question_type=item.get('type') or item.get('question_type'),
    )


def _split_blocks(text: str) -> List[str]:
    return [blk.strip() for blk in text.replace('\r\n', '\n').split('\n\n') if blk.strip()]


def _parse_blocks(blocks: List[str]) -> List[Dict]:
    out = []
    for blk in blocks:
        if '|' in blk:
            parts = [x.strip() for x in blk.split('|') if x.strip()]
        else:
            parts = [l.strip() for l in blk.splitlines() if l.strip()]
        if not parts:
            continue
        options = []
        for line in parts[1:]:
            text, is_correct = _parse_answer_line(line)
            options.append({'text': text, 'is_correct': is_correct})
        out.append(_question(parts[0], options))
    return out


def _question(content: str, options: List[dict], title: Optional[str] = None,
              explanation: Optional[str] = None, difficulty: Optional[str] = None,
              points: Optional[int] = None, question_type: Optional[str] = None) -> dict:
    content = content.strip()
    if options and not any(o['is_correct'] for o in options):
        options[0]['is_correct'] = True
    if question_type is None:
        correct_count = sum(1 for o in options if o['is_correct'])
        if not options:
            question_type = 'SHORT_ANSWER'
        elif correct_count > 1:
            question_type = 'MULTIPLE_SELECTION'
        elif sorted(o['text'].lower() for o in options) == ['false', 'true']:
            question_type = 'TRUE_FALSE'
        else:
            question_type = 'MULTIPLE_CHOICE'
    difficulty = (difficulty or 'MEDIUM').strip().upper()
    if difficulty not in ('EASY', 'MEDIUM', 'HARD'):
        difficulty = 'MEDIUM'
    return {
        'title': (title or content[:80]).strip(),
        'content': content,
        'type': str(question_type).upper(),
        'difficulty': difficulty,
        'points': points if points and 1 <= points <= 100 else 10,
        'explanation': explanation or None,
        'options': options,
    }


def _parse_answer_line(text: str) -> Tuple[str, bool]:
    """Detect correctness markers in an answer line.

    Supports a leading '*' or trailing markers like '(correct)'.
    """
    is_correct = False
    cleaned = text.strip()
    lower = cleaned.lower()
    for marker in ('(correct)', '[correct]', '{correct}'):
        if lower.endswith(marker):
            is_correct = True
            cleaned = cleaned[: -len(marker)].strip()
            break
    if cleaned.startswith('*'):
        is_correct = True
        cleaned = cleaned.lstrip('*').strip()
    return cleaned, is_correct


def _coerce_int(val):
    try:
        return int(val) if val is not None and str(val).strip() != '' else None
    except (TypeError, ValueError):
        return None
