# controller.py
# Pipeline driver: sequences split -> map (fan-out) -> reduce across stage servers.
import logging
import os
import time
from concurrent.futures import ThreadPoolExecutor

import requests
from flask import Flask, jsonify, request

from config import load_config, load_driver_config
from errors import StageInvocationError
from storage import parse_ref

logger = logging.getLogger(__name__)

STAGES = ('split', 'map', 'reduce')


def _error_message(response):
    try:
        body = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    if isinstance(body, dict) and body.get('message'):
        return f"[{body.get('error', 'error')}] {body['message']}"
    return str(body)


def _dispatch_request(base_url, action, payload, timeout):
    """
    Load `action` on the stage server at `base_url`, run it with `payload`
    and return the action result. Any failure raises StageInvocationError.
    """
    try:
        r = requests.post(f"{base_url}/init", json={"action": action}, timeout=10)
        if r.status_code != 200:
            raise StageInvocationError(action, f"init failed at {base_url}: {_error_message(r)}", r.status_code)

        r = requests.post(f"{base_url}/run", json=payload, timeout=timeout)
    except requests.RequestException as e:
        raise StageInvocationError(action, f"request to {base_url} failed: {e}")

    if r.status_code != 200:
        raise StageInvocationError(action, _error_message(r), r.status_code)
    try:
        data = r.json()
    except ValueError:
        raise StageInvocationError(action, f"invalid response from {base_url}: {r.text[:200]}", r.status_code)
    return data.get("result")


def _field(result, stage, name):
    if not isinstance(result, dict) or name not in result:
        raise StageInvocationError(stage, f"response is missing '{name}': {result!r}")
    return result[name]


class PipelineDriver:
    def __init__(self, driver_config, dispatch=None):
        self.config = driver_config
        self.dispatch = dispatch or _dispatch_request

    def stage_url(self, stage, index=0):
        if stage == 'split':
            return self.config.splitter_url
        if stage == 'map':
            return self.config.mapper_urls[index % len(self.config.mapper_urls)]
        if stage == 'reduce':
            return self.config.reducer_url
        raise ValueError(f"unknown stage: {stage}")

    def call(self, stage, payload, index=0):
        return self.dispatch(self.stage_url(stage, index), stage, payload, self.config.request_timeout)

    def run(self, source_ref, chunk_count=None, final_bucket=None):
        """
        Run one pipeline over `source_ref`. Split and reduce failures abort the
        run; a failed map call only drops that chunk's contribution.
        """
        timings = {}
        total_start = time.time()

        # 1. Split
        logger.info(f"[wordcount_workflow] dispatching SPLIT for {source_ref}")
        split_payload = {"source_ref": source_ref}
        if chunk_count is not None:
            split_payload["chunk_count"] = chunk_count
        start = time.time()
        split_result = self.call('split', split_payload)
        timings['split'] = time.time() - start
        chunk_refs = _field(split_result, 'split', 'chunk_refs')
        logger.info(f"[wordcount_workflow] SPLIT done: {len(chunk_refs)} chunks")

        # 2. Map (parallel, chunk i -> mapper i % pool size)
        def _map_task(task_input):
            index, chunk_ref = task_input
            try:
                result = self.call('map', {"chunk_ref": chunk_ref}, index=index)
                return index, _field(result, 'map', 'table_ref'), None
            except StageInvocationError as e:
                logger.warning(f"[wordcount_workflow] MAP of chunk {index} ({chunk_ref}) failed, skipping: {e}")
                return index, None, str(e)

        start = time.time()
        table_refs = []
        failed_chunks = []
        if chunk_refs:
            with ThreadPoolExecutor(max_workers=len(chunk_refs)) as executor:
                for index, table_ref, error in executor.map(_map_task, enumerate(chunk_refs)):
                    if error is None:
                        table_refs.append(table_ref)
                    else:
                        failed_chunks.append({"index": index, "chunk_ref": chunk_refs[index], "error": error})
        timings['map'] = time.time() - start
        logger.info(f"[wordcount_workflow] MAP done: {len(table_refs)} tables, {len(failed_chunks)} failed")

        # 3. Reduce; with no tables left, the final table goes to the source bucket
        if not final_bucket and not table_refs:
            final_bucket = parse_ref(source_ref).bucket
        reduce_payload = {"table_refs": table_refs}
        if final_bucket:
            reduce_payload["final_bucket"] = final_bucket
        start = time.time()
        reduce_result = self.call('reduce', reduce_payload)
        final_ref = _field(reduce_result, 'reduce', 'final_ref')
        timings['reduce'] = time.time() - start

        timings['total'] = time.time() - total_start
        logger.info(f"[wordcount_workflow] success! final result: {final_ref}")

        return {
            "final_ref": final_ref,
            "unique_words": reduce_result.get('unique_words'),
            "chunk_refs": chunk_refs,
            "table_refs": table_refs,
            "failed_chunks": failed_chunks,
            "timings": timings
        }


app = Flask(__name__)
driver = PipelineDriver(load_driver_config())


@app.route('/dispatch/<stage>', methods=['POST'])
def dispatch(stage):
    if stage not in STAGES:
        return jsonify({"status": "error", "message": f"Unknown stage: {stage}"}), 404

    payload = request.get_json(silent=True) or {}
    try:
        result = driver.call(stage, payload, index=request.args.get('mapper', 0, type=int))
    except StageInvocationError as e:
        logger.error(f"[dispatch_route] {e}")
        status = e.status if e.status and 400 <= e.status < 500 else 502
        return jsonify({"status": "error", "stage": stage, "message": e.message}), status

    return jsonify({"status": "success", "result": result}), 200


@app.route('/dispatch_workflow', methods=['POST'])
def dispatch_workflow():
    body = request.get_json(silent=True) or {}
    if not isinstance(body, dict):
        return jsonify({"error": "request body must be a JSON object"}), 400
    workflow_name = body.get("workflow_name", "wordcount")
    payload = body.get("payload", {})

    if workflow_name != "wordcount":
        return jsonify({"error": f"Unknown workflow: {workflow_name}"}), 404
    if not isinstance(payload, dict):
        return jsonify({"error": "payload must be a JSON object"}), 400
    if not payload.get("source_ref"):
        return jsonify({"error": "payload.source_ref required"}), 400

    try:
        result = driver.run(
            payload["source_ref"],
            chunk_count=payload.get("chunk_count"),
            final_bucket=payload.get("final_bucket")
        )
    except StageInvocationError as e:
        logger.error(f"[wordcount_workflow] failed: {e}")
        return jsonify({"status": "error", "stage": e.stage, "message": e.message}), 502

    return jsonify(dict(result, status="success")), 200


@app.route('/stages', methods=['GET'])
def stages():
    return jsonify({
        "split": driver.config.splitter_url,
        "map": driver.config.mapper_urls,
        "reduce": driver.config.reducer_url
    })


if __name__ == '__main__':
    logging.basicConfig(
        level=load_config().log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    app.run(host='0.0.0.0', port=int(os.environ.get('PORT', 5000)), threaded=True)
