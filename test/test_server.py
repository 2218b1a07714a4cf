import asyncio
import json

import pytest
import requests

from sprat.server import DevServer, is_temporary
from sprat.test_harness import build_example


@pytest.fixture(scope='module')
def server(tmp_path_factory: pytest.TempPathFactory):
    tmp_path = tmp_path_factory.mktemp('server')
    settings, _ = build_example('basic_site', tmp_path)
    with DevServer(settings['base_dir'], 0) as dev_server:
        yield dev_server


def test_server(server: DevServer):
    response = requests.get(f'{server.url}/')
    assert response.status_code == 200
    assert response.headers['content-type'].startswith('text/html')
    assert 'livereload.js' in response.text
    assert response.text.index('livereload.js') < response.text.index('</head>')
    assert int(response.headers['content-length']) == len(response.content)


def test_server_head(server: DevServer):
    page = requests.get(f'{server.url}/index.html')
    response = requests.head(f'{server.url}/index.html')
    assert response.status_code == 200
    assert response.content == b''
    assert int(response.headers['content-length']) == len(page.content)


def test_server_static(server: DevServer):
    response = requests.get(f'{server.url}/css/custom.min.css')
    assert response.status_code == 200
    assert response.headers['content-type'].startswith('text/css')
    assert 'livereload.js' not in response.text
    assert int(response.headers['content-length']) == len(response.content)


def test_server_etag(server: DevServer):
    response = requests.get(f'{server.url}/')
    assert response.status_code == 200
    etag = response.headers['etag']
    new_response = requests.get(f'{server.url}/', headers={'If-None-Match': etag})
    assert new_response.status_code == 304


def test_server_stale_etag(server: DevServer):
    response = requests.get(f'{server.url}/')
    etag = response.headers['etag']
    new_response = requests.get(f'{server.url}/', headers={'If-None-Match': etag + '0'})
    assert new_response.status_code == 200


def test_server_404(server: DevServer):
    response = requests.get(f'{server.url}/does_not_exist')
    assert response.status_code == 404


def test_server_reloads_browsers(server: DevServer):
    from tornado.websocket import websocket_connect

    target = server.directory / 'extra.html'

    async def wait_for_reload():
        connection = await websocket_connect(f'ws://{server.host}:{server.port}/livereload')
        try:
            await connection.write_message(json.dumps({
                'command': 'hello',
                'protocols': ['http://livereload.com/protocols/official-7'],
            }))
            hello = json.loads(await connection.read_message())
            assert hello['command'] == 'hello'
            await connection.write_message(json.dumps({'command': 'info', 'url': f'{server.url}/'}))

            # Changes shortly after startup or after another reload are
            # skipped, so keep changing the file until a reload names it.
            for attempt in range(20):
                target.write_text(f'<p>{attempt}</p>')
                try:
                    while True:
                        message = json.loads(await asyncio.wait_for(connection.read_message(), 1))
                        if message['command'] == 'reload' and message['path'].endswith('extra.html'):
                            return message
                except asyncio.TimeoutError:
                    continue
            return None
        finally:
            connection.close()

    message = asyncio.run(wait_for_reload())
    assert message is not None
    assert message['path'].endswith('extra.html')


def test_is_temporary():
    assert is_temporary('/site/build/.index.html.x1y2.tmp')
    assert not is_temporary('/site/build/index.html')
