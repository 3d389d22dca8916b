"""
Tests for the pipeline driver and the controller endpoints
"""

import json
import threading
from unittest.mock import Mock, patch

import pytest
import requests

import controller
from config import DriverConfig
from controller import PipelineDriver, _dispatch_request
from errors import PipelineError, StageInvocationError
from proxy import ActionRunner
from storage import parse_ref
from wordcount import count_words


class FakeStages:
    """Records stage calls and answers them without HTTP"""

    def __init__(self, chunk_count=3, failing_chunks=(), split_error=None, reduce_error=None):
        self.chunk_count = chunk_count
        self.failing_chunks = set(failing_chunks)
        self.split_error = split_error
        self.reduce_error = reduce_error
        self.calls = []
        self.lock = threading.Lock()

    def __call__(self, base_url, action, payload, timeout):
        with self.lock:
            self.calls.append((base_url, action, payload))
        if action == 'split':
            if self.split_error:
                raise self.split_error
            return {'chunk_refs': [f'file://data/chunks/in_chunk_{i}.txt' for i in range(self.chunk_count)],
                    'chunk_num': self.chunk_count}
        if action == 'map':
            index = int(payload['chunk_ref'].rsplit('_', 1)[1].split('.')[0])
            if index in self.failing_chunks:
                raise StageInvocationError('map', 'mapper down', 502)
            return {'table_ref': f'file://data/mapped/in_chunk_{index}_mapped.json', 'unique_words': 1}
        if action == 'reduce':
            if self.reduce_error:
                raise self.reduce_error
            return {'final_ref': 'file://data/final/word_count_final.json', 'unique_words': 5}
        raise AssertionError(action)

    def calls_for(self, action):
        return [c for c in self.calls if c[1] == action]


def _driver_config(mappers=3):
    return DriverConfig(
        splitter_url='http://splitter:8080',
        mapper_urls=[f'http://mapper-{i}:8080' for i in range(mappers)],
        reducer_url='http://reducer:8080',
        request_timeout=30,
    )


class TestPipelineDriver:

    def test_runs_split_map_reduce(self):
        stages = FakeStages()
        result = PipelineDriver(_driver_config(), dispatch=stages).run('file://data/in.txt')

        assert stages.calls[0] == ('http://splitter:8080', 'split', {'source_ref': 'file://data/in.txt'})
        assert len(stages.calls_for('map')) == 3
        assert stages.calls[-1][1] == 'reduce'
        assert result['final_ref'] == 'file://data/final/word_count_final.json'
        assert result['table_refs'] == [f'file://data/mapped/in_chunk_{i}_mapped.json' for i in range(3)]
        assert result['failed_chunks'] == []
        assert set(result['timings']) == {'split', 'map', 'reduce', 'total'}

    def test_map_calls_are_round_robin(self):
        stages = FakeStages(chunk_count=5)
        PipelineDriver(_driver_config(mappers=3), dispatch=stages).run('file://data/in.txt')

        by_chunk = {c[2]['chunk_ref']: c[0] for c in stages.calls_for('map')}
        assert [by_chunk[f'file://data/chunks/in_chunk_{i}.txt'] for i in range(5)] == [
            'http://mapper-0:8080', 'http://mapper-1:8080', 'http://mapper-2:8080',
            'http://mapper-0:8080', 'http://mapper-1:8080',
        ]

    def test_chunk_count_and_final_bucket_are_forwarded(self):
        stages = FakeStages()
        PipelineDriver(_driver_config(), dispatch=stages).run('file://data/in.txt', chunk_count=3, final_bucket='out')

        assert stages.calls_for('split')[0][2] == {'source_ref': 'file://data/in.txt', 'chunk_count': 3}
        assert stages.calls_for('reduce')[0][2]['final_bucket'] == 'out'

    def test_failed_map_is_skipped(self):
        stages = FakeStages(failing_chunks=[1])
        result = PipelineDriver(_driver_config(), dispatch=stages).run('file://data/in.txt')

        assert stages.calls_for('reduce')[0][2] == {'table_refs': [
            'file://data/mapped/in_chunk_0_mapped.json',
            'file://data/mapped/in_chunk_2_mapped.json',
        ]}
        assert [f['index'] for f in result['failed_chunks']] == [1]

    def test_all_maps_failing_reduces_into_source_bucket(self):
        stages = FakeStages(failing_chunks=[0, 1, 2])
        result = PipelineDriver(_driver_config(), dispatch=stages).run('file://data/in.txt')

        assert stages.calls_for('reduce')[0][2] == {'table_refs': [], 'final_bucket': 'data'}
        assert len(result['failed_chunks']) == 3

    def test_explicit_final_bucket_wins_when_all_maps_fail(self):
        stages = FakeStages(failing_chunks=[0, 1, 2])
        PipelineDriver(_driver_config(), dispatch=stages).run('file://data/in.txt', final_bucket='out')

        assert stages.calls_for('reduce')[0][2]['final_bucket'] == 'out'

    def test_split_failure_aborts_the_run(self):
        stages = FakeStages(split_error=StageInvocationError('split', 'source missing', 502))

        with pytest.raises(StageInvocationError):
            PipelineDriver(_driver_config(), dispatch=stages).run('file://data/in.txt')
        assert [c[1] for c in stages.calls] == ['split']

    def test_reduce_failure_aborts_the_run(self):
        stages = FakeStages(reduce_error=StageInvocationError('reduce', 'write failed', 502))

        with pytest.raises(StageInvocationError) as exc_info:
            PipelineDriver(_driver_config(), dispatch=stages).run('file://data/in.txt')
        assert exc_info.value.stage == 'reduce'

    def test_malformed_split_response_aborts(self):
        driver = PipelineDriver(_driver_config(), dispatch=lambda *args: {'unexpected': True})
        with pytest.raises(StageInvocationError):
            driver.run('file://data/in.txt')


class TestDispatchRequest:

    def _response(self, status_code, body):
        resp = Mock()
        resp.status_code = status_code
        resp.json.return_value = body
        resp.text = json.dumps(body)
        return resp

    def test_init_then_run(self):
        with patch('controller.requests.post') as post:
            post.side_effect = [
                self._response(200, None),
                self._response(200, {'result': {'table_ref': 'file://b/mapped/x.json'}}),
            ]

            result = _dispatch_request('http://mapper:8080', 'map', {'chunk_ref': 'file://b/chunks/x.txt'}, 30)

        assert result == {'table_ref': 'file://b/mapped/x.json'}
        assert post.call_args_list[0].args[0] == 'http://mapper:8080/init'
        assert post.call_args_list[0].kwargs['json'] == {'action': 'map'}
        assert post.call_args_list[1].args[0] == 'http://mapper:8080/run'
        assert post.call_args_list[1].kwargs['timeout'] == 30

    def test_stage_error_is_raised_with_status(self):
        with patch('controller.requests.post') as post:
            post.side_effect = [
                self._response(200, None),
                self._response(400, {'error': 'bad_request', 'message': 'invalid object reference'}),
            ]

            with pytest.raises(StageInvocationError) as exc_info:
                _dispatch_request('http://mapper:8080', 'map', {}, 30)

        assert exc_info.value.status == 400
        assert 'bad_request' in exc_info.value.message

    def test_connection_error_is_raised(self):
        with patch('controller.requests.post', side_effect=requests.ConnectionError('refused')):
            with pytest.raises(StageInvocationError) as exc_info:
                _dispatch_request('http://mapper:8080', 'map', {}, 30)

        assert exc_info.value.status is None


class TestControllerEndpoints:

    @pytest.fixture
    def stages(self):
        return FakeStages()

    @pytest.fixture
    def client(self, stages, monkeypatch):
        monkeypatch.setattr(controller, 'driver', PipelineDriver(_driver_config(), dispatch=stages))
        return controller.app.test_client()

    def test_dispatch_workflow(self, client):
        resp = client.post('/dispatch_workflow', json={
            'workflow_name': 'wordcount', 'payload': {'source_ref': 'file://data/in.txt'}
        })

        assert resp.status_code == 200
        body = resp.get_json()
        assert body['status'] == 'success'
        assert body['final_ref'] == 'file://data/final/word_count_final.json'

    def test_dispatch_workflow_requires_source_ref(self, client):
        resp = client.post('/dispatch_workflow', json={'workflow_name': 'wordcount', 'payload': {}})
        assert resp.status_code == 400

    @pytest.mark.parametrize('body', [
        {'workflow_name': 'wordcount', 'payload': ['file://data/in.txt']},
        ['wordcount'],
    ])
    def test_dispatch_workflow_rejects_non_object_json(self, client, stages, body):
        resp = client.post('/dispatch_workflow', json=body)

        assert resp.status_code == 400
        assert stages.calls == []

    def test_unknown_workflow_is_404(self, client):
        resp = client.post('/dispatch_workflow', json={'workflow_name': 'video', 'payload': {}})
        assert resp.status_code == 404

    def test_stage_failure_is_502(self, client, stages):
        stages.split_error = StageInvocationError('split', 'source missing', 502)

        resp = client.post('/dispatch_workflow', json={'payload': {'source_ref': 'file://data/in.txt'}})

        assert resp.status_code == 502
        assert resp.get_json()['stage'] == 'split'

    def test_dispatch_single_stage(self, client, stages):
        resp = client.post('/dispatch/map?mapper=2', json={'chunk_ref': 'file://data/chunks/in_chunk_0.txt'})

        assert resp.status_code == 200
        assert stages.calls[-1][0] == 'http://mapper-2:8080'

    def test_dispatch_unknown_stage_is_404(self, client):
        assert client.post('/dispatch/transcode', json={}).status_code == 404

    def test_stages(self, client):
        body = client.get('/stages').get_json()
        assert body['map'] == ['http://mapper-0:8080', 'http://mapper-1:8080', 'http://mapper-2:8080']


def _local_dispatch(base_url, action, payload, timeout):
    """Run the action in-process and report failures the way the stage server does"""
    runner = ActionRunner()
    runner.init({'action': action})
    try:
        return runner.run(payload)
    except PipelineError as e:
        raise StageInvocationError(action, e.message, e.status)


def _maps_down_dispatch(base_url, action, payload, timeout):
    if action == 'map':
        raise StageInvocationError('map', f"request to {base_url} failed: connection refused")
    return _local_dispatch(base_url, action, payload, timeout)


class TestEndToEnd:

    def test_pipeline_over_filesystem_store(self, store):
        text = 'Hello world ' + 'hello again ' + 'world, bye! '
        store.store(parse_ref('file://data/input.txt'), text.encode('utf-8'))

        result = PipelineDriver(_driver_config(), dispatch=_local_dispatch).run('file://data/input.txt')

        final = json.loads(store.fetch(parse_ref(result['final_ref'])))
        assert final == count_words(text)
        assert result['failed_chunks'] == []

    def test_missing_source_aborts(self, store):
        with pytest.raises(StageInvocationError) as exc_info:
            PipelineDriver(_driver_config(), dispatch=_local_dispatch).run('file://data/missing.txt')
        assert exc_info.value.stage == 'split'

    def test_every_mapper_down_yields_empty_final_table(self, store):
        store.store(parse_ref('file://data/input.txt'), b'some words here')

        result = PipelineDriver(_driver_config(), dispatch=_maps_down_dispatch).run('file://data/input.txt')

        assert result['final_ref'] == 'file://data/final/word_count_final.json'
        assert result['table_refs'] == []
        assert [f['index'] for f in result['failed_chunks']] == [0, 1, 2]
        assert json.loads(store.fetch(parse_ref(result['final_ref']))) == {}
