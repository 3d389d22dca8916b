import logging

from config import load_config
from errors import BadRequestError
from storage import ObjectRef, open_store, parse_ref
from wordcount import FINAL_KEY, decode_table, encode_table, merge_counts

logger = logging.getLogger('actions.reduce')


def _resolve_final_ref(event, config, table_refs):
    bucket = event.get('final_bucket') or config.default_bucket
    if not bucket and table_refs:
        bucket = table_refs[0].bucket
    if not bucket:
        raise BadRequestError("no final bucket: pass final_bucket, configure "
                              "PIPELINE_DEFAULT_BUCKET or give at least one table reference")
    scheme = table_refs[0].scheme if table_refs else config.default_scheme
    return ObjectRef(scheme, bucket, FINAL_KEY)


def main(event):
    config = load_config()

    raw_refs = event.get('table_refs')
    if raw_refs is None:
        raw_refs = config.source_refs
        if raw_refs is None:
            raise BadRequestError("table_refs is required (or configure PIPELINE_SOURCE_REFS)")
    if not isinstance(raw_refs, list):
        raise BadRequestError(f"table_refs must be a list, got {type(raw_refs).__name__}")

    # 1. parse every reference first; a bad one fails the run with no store I/O
    table_refs = [parse_ref(uri) for uri in raw_refs]
    final_ref = _resolve_final_ref(event, config, table_refs)

    logger.info(f"REDUCE: Merging {len(table_refs)} partial tables...")

    # 2. fetch in list order; any fetch or parse failure aborts the merge
    stores = {}

    def _store_for(scheme):
        if scheme not in stores:
            stores[scheme] = open_store(scheme, config)
        return stores[scheme]

    tables = []
    for ref in table_refs:
        tables.append(decode_table(_store_for(ref.scheme).fetch(ref), source=str(ref)))

    merged = merge_counts(tables)
    logger.info(f"REDUCE: Merge complete. Total unique words: {len(merged)}")

    # 3. write the merged table to the well-known final key
    _store_for(final_ref.scheme).store(final_ref, encode_table(merged))
    logger.info(f"REDUCE: Final result saved to {final_ref}")

    return {
        "final_ref": str(final_ref),
        "unique_words": len(merged)
    }
