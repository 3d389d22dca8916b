# wordcount.py
# Partitioning, key naming, counting and merging shared by the three stages.
import json
import re
from collections import defaultdict

from errors import TableParseError

PUNCTUATION = '.,!?;:"\''
# Unicode White_Space only; str.split() would also break on \x1c-\x1f
WHITESPACE = re.compile(r"[\t\n\v\f\r \x85\xa0\u1680\u2000-\u200a\u2028\u2029\u202f\u205f\u3000]+")

CHUNK_PREFIX = 'chunks/'
MAPPED_PREFIX = 'mapped/'
TEXT_SUFFIX = '.txt'
MAPPED_SUFFIX = '_mapped.json'
FINAL_KEY = 'final/word_count_final.json'


def split_ranges(length, chunk_count):
    """
    Byte ranges [(start, end), ...] for `chunk_count` contiguous chunks.
    Every chunk but the last has length // chunk_count bytes; the last one
    takes the remainder. Boundaries are not word aligned.
    """
    size = length // chunk_count
    ranges = []
    for i in range(chunk_count):
        start = i * size
        end = length if i == chunk_count - 1 else start + size
        ranges.append((start, end))
    return ranges


def split_content(content, chunk_count):
    return [content[start:end] for start, end in split_ranges(len(content), chunk_count)]


def chunk_key(source_key, index):
    # e.g. "books/input.txt" -> "chunks/books/input_chunk_0.txt"
    base = source_key[:-len(TEXT_SUFFIX)] if source_key.endswith(TEXT_SUFFIX) else source_key
    return f"{CHUNK_PREFIX}{base}_chunk_{index}{TEXT_SUFFIX}"


def mapped_key(key):
    # only the first occurrence of each pattern is replaced
    return key.replace(CHUNK_PREFIX, MAPPED_PREFIX, 1).replace(TEXT_SUFFIX, MAPPED_SUFFIX, 1)


def tokenize(text):
    for token in WHITESPACE.split(text.lower()):
        word = token.strip(PUNCTUATION)
        if word:
            yield word


def count_words(content):
    """Word -> count for raw chunk bytes (or text)."""
    if isinstance(content, bytes):
        # a byte boundary may cut a multi-byte character in half
        content = content.decode('utf-8', errors='replace')

    counts = defaultdict(int)
    for word in tokenize(content):
        counts[word] += 1
    return dict(counts)


def merge_counts(tables):
    merged = defaultdict(int)
    for table in tables:
        for word, count in table.items():
            merged[word] += count
    return dict(merged)


def encode_table(table):
    return json.dumps(table, sort_keys=True, separators=(',', ':'), ensure_ascii=False).encode('utf-8')


def decode_table(data, source='table'):
    try:
        table = json.loads(data.decode('utf-8') if isinstance(data, bytes) else data)
    except (UnicodeDecodeError, ValueError) as e:
        raise TableParseError(f"failed to parse {source}: {e}")

    if not isinstance(table, dict):
        raise TableParseError(f"failed to parse {source}: expected a JSON object, got {type(table).__name__}")
    for word, count in table.items():
        if isinstance(count, bool) or not isinstance(count, int) or count < 0:
            raise TableParseError(f"failed to parse {source}: invalid count {count!r} for word {word!r}")
    return table
