"""Tests for playlist CRUD."""

import pytest


@pytest.fixture()
def playlist(client):
    resp = client.post('/api/playlists', json={'name': 'Road trip', 'userId': 'u1'})
    return resp.get_json()['playlist']


def test_create_playlist(playlist):
    assert playlist['name'] == 'Road trip'
    assert playlist['user_id'] == 'u1'
    assert playlist['max_songs'] == 8
    assert playlist['is_public'] is False
    assert playlist['playlist_items'] == []


def test_name_required(client):
    resp = client.post('/api/playlists', json={'description': 'no name'})
    assert resp.status_code == 400
    assert resp.get_json()['error'] == 'Playlist name is required'


def test_guest_is_default_owner(client):
    body = client.post('/api/playlists', json={'name': 'Mine'}).get_json()
    assert body['playlist']['user_id'] == 'guest'


def test_list_playlists(client, playlist):
    client.post('/api/playlists', json={'name': 'Other', 'userId': 'u2'})
    all_lists = client.get('/api/playlists').get_json()['playlists']
    assert {p['name'] for p in all_lists} == {'Road trip', 'Other'}

    mine = client.get('/api/playlists?userId=u1').get_json()['playlists']
    assert [p['name'] for p in mine] == ['Road trip']


def test_add_and_remove_items(client, playlist):
    url = f"/api/playlists/{playlist['id']}/items"
    first = client.post(url, json={'audioFileId': 'a1'}).get_json()['playlistItem']
    second = client.post(url, json={'audioFileId': 'a2'}).get_json()['playlistItem']
    assert (first['position'], second['position']) == (0, 1)

    [listed] = client.get('/api/playlists').get_json()['playlists']
    assert [i['audio_file_id'] for i in listed['playlist_items']] == ['a1', 'a2']

    resp = client.delete(f"{url}/{first['id']}")
    assert resp.status_code == 200
    [listed] = client.get('/api/playlists').get_json()['playlists']
    assert [i['audio_file_id'] for i in listed['playlist_items']] == ['a2']


def test_add_requires_audio_file(client, playlist):
    resp = client.post(f"/api/playlists/{playlist['id']}/items", json={})
    assert resp.status_code == 400


def test_add_to_unknown_playlist(client):
    resp = client.post('/api/playlists/missing/items', json={'audioFileId': 'a1'})
    assert resp.status_code == 404


def test_playlist_full(client, playlist):
    url = f"/api/playlists/{playlist['id']}/items"
    for i in range(8):
        assert client.post(url, json={'audioFileId': f'a{i}'}).status_code == 200
    resp = client.post(url, json={'audioFileId': 'one-too-many'})
    assert resp.status_code == 400
    assert 'full' in resp.get_json()['error']


def test_remove_unknown_item(client, playlist):
    resp = client.delete(f"/api/playlists/{playlist['id']}/items/nope")
    assert resp.status_code == 404
