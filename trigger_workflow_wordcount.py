import argparse
import sys
import time

import requests

from config import load_config
from errors import PipelineError
from storage import open_store, parse_ref
from wordcount import decode_table

# --- Configuration ---
CONTROLLER_URL = 'http://localhost:5000'


# --- 1. Upload the input text into the object store ---
def upload_source(local_path, source_ref, config):
    ref = parse_ref(source_ref)
    with open(local_path, 'rb') as f:
        data = f.read()
    open_store(ref.scheme, config).store(ref, data)
    print(f"Uploaded '{local_path}' ({len(data)} bytes) to {ref}")


# --- 2. Trigger one pipeline run through the controller ---
def trigger_workflow(controller_url, source_ref, chunk_count=None, final_bucket=None):
    payload = {"source_ref": source_ref}
    if chunk_count is not None:
        payload["chunk_count"] = chunk_count
    if final_bucket:
        payload["final_bucket"] = final_bucket

    resp = requests.post(
        f"{controller_url}/dispatch_workflow",
        json={"workflow_name": "wordcount", "payload": payload}
    )
    try:
        data = resp.json()
    except ValueError:
        data = {"message": resp.text}
    if resp.status_code != 200:
        raise RuntimeError(f"workflow failed ({resp.status_code}): {data.get('stage', '')} {data.get('message', data)}")
    return data


def top_words(final_ref, config, n=10):
    ref = parse_ref(final_ref)
    table = decode_table(open_store(ref.scheme, config).fetch(ref), source=final_ref)
    return sorted(table.items(), key=lambda item: (-item[1], item[0]))[:n]


# --- 3. Repeated runs for timing ---
def run_experiment(controller_url, source_ref, runs, chunk_count=None, final_bucket=None, pause=2.0):
    rows = []
    print(f"\nConsistency test ({runs} runs)")
    print("Run\tSplit\tMap\tReduce\tTotal")
    for i in range(1, runs + 1):
        result = trigger_workflow(controller_url, source_ref, chunk_count, final_bucket)
        t = result['timings']
        rows.append(t)
        print(f"{i}\t{t['split']:.3f}\t{t['map']:.3f}\t{t['reduce']:.3f}\t{t['total']:.3f}")
        if i < runs:
            time.sleep(pause)

    averages = {k: sum(row[k] for row in rows) / len(rows) for k in ('split', 'map', 'reduce', 'total')}
    chunks = len(result['chunk_refs']) or 1
    # sequential estimate: every chunk mapped one after another
    sequential = averages['split'] + averages['map'] * chunks + averages['reduce']
    averages['sequential_estimate'] = sequential
    averages['speedup'] = sequential / averages['total'] if averages['total'] > 0 else 0.0
    return averages


def main(argv=None):
    parser = argparse.ArgumentParser(description="Trigger the word count pipeline")
    parser.add_argument("source_ref", help="Source object reference, e.g. s3://my-bucket/input.txt")
    parser.add_argument("--controller", default=CONTROLLER_URL, help="Controller base URL")
    parser.add_argument("--upload", metavar="PATH", help="Upload this local file to source_ref first")
    parser.add_argument("--chunks", type=int, help="Number of chunks (default: PIPELINE_CHUNK_COUNT)")
    parser.add_argument("--final-bucket", help="Bucket for the final result")
    parser.add_argument("--runs", type=int, default=1, help="Repeat the run N times and print average timings")
    args = parser.parse_args(argv)

    config = load_config()

    try:
        if args.upload:
            upload_source(args.upload, args.source_ref, config)

        if args.runs > 1:
            avg = run_experiment(args.controller, args.source_ref, args.runs, args.chunks, args.final_bucket)
            print("\nAverages:")
            for k in ('split', 'map', 'reduce', 'total'):
                print(f"{k.capitalize()}: {avg[k]:.3f} sec")
            print(f"\nEstimated Sequential Time: {avg['sequential_estimate']:.3f} sec")
            print(f"Parallel Time: {avg['total']:.3f} sec")
            print(f"Speedup: {avg['speedup']:.2f}x")
            return 0

        result = trigger_workflow(args.controller, args.source_ref, args.chunks, args.final_bucket)
    except (RuntimeError, PipelineError, requests.RequestException, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    t = result['timings']
    print("\n=== Performance Summary ===")
    print(f"Split Time:  {t['split']:.3f}s")
    print(f"Map Time:    {t['map']:.3f}s")
    print(f"Reduce Time: {t['reduce']:.3f}s")
    print(f"Total Time:  {t['total']:.3f}s")
    print(f"Chunks: {len(result['chunk_refs'])}, failed: {len(result['failed_chunks'])}")
    print(f"Final Result: {result['final_ref']}")

    try:
        for word, count in top_words(result['final_ref'], config):
            print(f"  {word}: {count}")
    except PipelineError as e:
        print(f"(could not read final table: {e})", file=sys.stderr)
    return 0


if __name__ == '__main__':
    sys.exit(main())
