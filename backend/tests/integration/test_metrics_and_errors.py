def test_metrics_endpoint_exposes_prometheus_after_requests(client, auth_headers):
    assert client.get('/healthz').status_code == 200
    assert client.get('/tasks', headers=auth_headers).status_code == 200
    m = client.get('/metrics')
    assert m.status_code == 200
    assert 'miniorg_requests_total' in m.text


def test_healthz_reports_state_backend(client):
    body = client.get('/healthz').json()
    assert body['status'] == 'ok'
    assert body['oauthStateBackend'] == 'memory'
    assert body['tracing'] in ('enabled', 'disabled')


def test_unknown_task_returns_error_detail(client, auth_headers):
    r = client.patch('/tasks/does-not-exist', json={'title': 'x'}, headers=auth_headers)
    assert r.status_code == 404
    assert r.json()['detail'] == {'code': 'TASK_NOT_FOUND', 'message': 'Task not found'}
