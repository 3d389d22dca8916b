# proxy.py
# Stage server: hosts one pipeline action (split / map / reduce) behind /init and /run.
import logging
import os
import time

from flask import Flask, jsonify, request
from gevent.pywsgi import WSGIServer

from config import load_config
from errors import PipelineError

logger = logging.getLogger(__name__)

exec_path = os.environ.get('ACTIONS_DIR', os.path.join(os.path.dirname(os.path.abspath(__file__)), 'actions'))
default_file = 'main.py'  # every action directory has this entry point


class UnknownActionError(Exception):
    pass


class ActionRunner:
    def __init__(self, actions_dir=None):
        self.actions_dir = actions_dir or exec_path
        self.code = None
        self.action = None
        self.action_context = None

    def init(self, inp):
        action = inp.get('action') if isinstance(inp, dict) else None
        if not isinstance(action, str) or not action or '/' in action or action.startswith('.'):
            raise UnknownActionError(f"invalid action name: {action!r}")

        filename = os.path.join(self.actions_dir, action, default_file)
        if not os.path.isfile(filename):
            raise UnknownActionError(f"unknown action: {action}")

        # compile the action file and run its top-level code in a fresh namespace
        with open(filename, 'r') as f:
            code = compile(f.read(), filename, mode='exec')

        self.action_context = {'__file__': filename, '__name__': f'action_{action}'}
        exec(code, self.action_context)
        self.code = code
        self.action = action
        return True

    def run(self, inp):
        # concurrent runs share the namespace, so the input is passed, not stored
        return self.action_context['main'](inp)


proxy = Flask(__name__)
proxy.status = 'new'
proxy.debug = False
runner = ActionRunner()


@proxy.route('/status', methods=['GET'])
def status():
    res = {}
    res['status'] = proxy.status
    res['workdir'] = os.getcwd()
    if runner.action:
        res['action'] = runner.action
    return res


@proxy.route('/init', methods=['POST'])
def init():
    proxy.status = 'init'

    inp = request.get_json(force=True, silent=True)
    try:
        runner.init(inp)
    except UnknownActionError as e:
        proxy.status = 'ok' if runner.action else 'new'
        return jsonify({"error": "unknown_action", "message": str(e)}), 404

    logger.info(f"Loaded action '{runner.action}'")
    proxy.status = 'ok'
    return ('OK', 200)


@proxy.route('/run', methods=['POST'])
def run():
    if not runner.action:
        return jsonify({"error": "not_initialized", "message": "call /init before /run"}), 409

    inp = request.get_json(force=True, silent=True)
    if inp is None:
        inp = {}
    if not isinstance(inp, dict):
        return jsonify({"error": "bad_request", "message": "request body must be a JSON object"}), 400

    proxy.status = 'run'
    start = time.time()
    try:
        out = runner.run(inp)
    except PipelineError as e:
        logger.error(f"{runner.action} failed: [{e.code}] {e.message}")
        return jsonify(e.to_dict()), e.status
    except Exception as e:
        logger.exception(f"{runner.action} failed unexpectedly")
        return jsonify({"error": "internal_error", "message": str(e)}), 500
    finally:
        proxy.status = 'ok'
    end = time.time()

    logger.info(f"{runner.action} duration: {end - start:.3f}s")
    return {
        "start_time": start,
        "end_time": end,
        "duration": end - start,
        "result": out
    }


def main():
    config = load_config()
    logging.basicConfig(
        level=config.log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    action = os.environ.get('STAGE_ACTION')
    if action:
        runner.init({'action': action})
        proxy.status = 'ok'
        logger.info(f"Pre-loaded action '{action}'")

    port = int(os.environ.get('PORT', 5000))
    server = WSGIServer(('0.0.0.0', port), proxy)
    logger.info(f"Stage server listening on port {port}")
    server.serve_forever()


if __name__ == '__main__':
    main()
