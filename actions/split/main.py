import logging

from config import load_config, parse_chunk_count
from errors import BadRequestError
from storage import open_store, parse_ref
from wordcount import chunk_key, split_content

logger = logging.getLogger('actions.split')


def main(event):
    config = load_config()

    # 1. validate the request before touching the store
    source_ref = parse_ref(event.get('source_ref'))
    try:
        chunk_count = parse_chunk_count(event.get('chunk_count', config.chunk_count))
    except ValueError as e:
        raise BadRequestError(str(e))

    store = open_store(source_ref.scheme, config)

    # 2. read the source object
    logger.info(f"SPLIT: Reading {source_ref} and splitting into {chunk_count} chunks.")
    content = store.fetch(source_ref)

    # 3. write each byte range as its own object, in partition order
    chunk_refs = []
    for i, chunk in enumerate(split_content(content, chunk_count)):
        ref = store.store(source_ref.with_key(chunk_key(source_ref.key, i)), chunk)
        chunk_refs.append(str(ref))
        logger.info(f"SPLIT: Saved chunk {i} ({len(chunk)} bytes) to {ref}")

    return {
        "chunk_refs": chunk_refs,
        "chunk_num": len(chunk_refs)
    }
