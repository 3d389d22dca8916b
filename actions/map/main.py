import logging

from config import load_config
from storage import open_store, parse_ref
from wordcount import count_words, encode_table, mapped_key

logger = logging.getLogger('actions.map')


def main(event):
    chunk_ref = parse_ref(event.get('chunk_ref'))
    store = open_store(chunk_ref.scheme, load_config())

    logger.info(f"MAP: Processing chunk {chunk_ref}")

    # 1. load the chunk and count its words
    table = count_words(store.fetch(chunk_ref))

    # 2. save the table next to the chunk under mapped/
    table_ref = store.store(chunk_ref.with_key(mapped_key(chunk_ref.key)), encode_table(table))

    logger.info(f"MAP: Finished chunk {chunk_ref}. {len(table)} unique words saved to {table_ref}")

    return {
        "table_ref": str(table_ref),
        "unique_words": len(table)
    }
