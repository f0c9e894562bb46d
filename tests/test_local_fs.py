"""Tests for the local filesystem pass-through."""

import pytest

from filego.exceptions import ConflictError, InvalidInputError, NotFoundError


def test_list_root(local_fs):
    (local_fs.root / 'b.txt').write_text('bb')
    (local_fs.root / 'a').mkdir()

    entries = local_fs.list()

    assert [e.name for e in entries] == ['a', 'b.txt']
    assert entries[0].is_dir
    assert entries[1].size == 2
    assert entries[1].path == 'b.txt'


def test_list_missing_directory(local_fs):
    with pytest.raises(NotFoundError):
        local_fs.list('missing')


def test_list_a_file(local_fs):
    (local_fs.root / 'f.txt').write_text('x')
    with pytest.raises(InvalidInputError):
        local_fs.list('f.txt')


def test_mkdir_creates_parents(local_fs):
    entry = local_fs.mkdir('docs/2024')

    assert entry.is_dir
    assert entry.path == 'docs/2024'
    assert (local_fs.root / 'docs' / '2024').is_dir()


def test_mkdir_existing(local_fs):
    local_fs.mkdir('docs')
    with pytest.raises(ConflictError):
        local_fs.mkdir('docs')


def test_move(local_fs):
    (local_fs.root / 'a.txt').write_text('hello')

    entry = local_fs.move('a.txt', 'sub/b.txt')

    assert entry.path == 'sub/b.txt'
    assert (local_fs.root / 'sub' / 'b.txt').read_text() == 'hello'
    assert not (local_fs.root / 'a.txt').exists()


def test_move_missing(local_fs):
    with pytest.raises(NotFoundError):
        local_fs.move('nope', 'other')


def test_delete_file_and_empty_dir(local_fs):
    (local_fs.root / 'f.txt').write_text('x')
    local_fs.mkdir('empty')

    local_fs.delete('f.txt')
    local_fs.delete('empty')

    assert local_fs.list() == []


def test_delete_non_empty_dir(local_fs):
    local_fs.mkdir('full')
    (local_fs.root / 'full' / 'f.txt').write_text('x')

    with pytest.raises(InvalidInputError):
        local_fs.delete('full')
    assert (local_fs.root / 'full' / 'f.txt').exists()


def test_delete_missing(local_fs):
    with pytest.raises(NotFoundError):
        local_fs.delete('ghost')


def test_delete_root(local_fs):
    with pytest.raises(InvalidInputError):
        local_fs.delete('')


@pytest.mark.parametrize('path', ['../outside', 'a/../../outside'])
def test_paths_cannot_escape_root(local_fs, path):
    with pytest.raises(InvalidInputError):
        local_fs.mkdir(path)


def test_entry_to_dict(local_fs):
    (local_fs.root / 'f.txt').write_text('abc')
    data = local_fs.stat('f.txt').to_dict()

    assert data['name'] == 'f.txt'
    assert data['size'] == 3
    assert data['isDir'] is False
    assert data['replicas'] == 1
    assert data['available'] is True


@pytest.mark.asyncio
async def test_upload_creates_parents(local_fs):
    entry = await local_fs.upload('a/b/c.bin', b'payload')

    assert entry.path == 'a/b/c.bin'
    assert entry.size == 7
    assert entry.replicas == 1
    assert (local_fs.root / 'a' / 'b' / 'c.bin').read_bytes() == b'payload'


@pytest.mark.asyncio
async def test_upload_replaces_existing_file(local_fs):
    await local_fs.upload('f.bin', b'old contents')
    local_fs.set_replicas('f.bin', 3)

    entry = await local_fs.upload('f.bin', b'new')

    assert entry.size == 3
    assert entry.replicas == 1
    assert await local_fs.download('f.bin') == b'new'


@pytest.mark.asyncio
async def test_upload_over_directory(local_fs):
    (local_fs.root / 'docs').mkdir()

    with pytest.raises(InvalidInputError):
        await local_fs.upload('docs', b'x')
    with pytest.raises(InvalidInputError):
        await local_fs.upload('', b'x')


@pytest.mark.asyncio
async def test_download_errors(local_fs):
    (local_fs.root / 'docs').mkdir()

    with pytest.raises(NotFoundError):
        await local_fs.download('missing.bin')
    with pytest.raises(InvalidInputError):
        await local_fs.download('docs')
    with pytest.raises(InvalidInputError):
        await local_fs.download('../outside.bin')


def test_set_replicas(local_fs):
    (local_fs.root / 'f.bin').write_bytes(b'12345')

    entry = local_fs.set_replicas('f.bin', 3)

    assert entry.replicas == 3
    assert local_fs.stat('f.bin').replicas == 3
    assert local_fs.list()[0].replicas == 3


@pytest.mark.parametrize('replicas', [0, -1])
def test_set_replicas_rejects_low_factor(local_fs, replicas):
    (local_fs.root / 'f.bin').write_bytes(b'x')

    with pytest.raises(InvalidInputError):
        local_fs.set_replicas('f.bin', replicas)


def test_set_replicas_missing_or_directory(local_fs):
    (local_fs.root / 'docs').mkdir()

    with pytest.raises(NotFoundError):
        local_fs.set_replicas('ghost.bin', 2)
    with pytest.raises(InvalidInputError):
        local_fs.set_replicas('docs', 2)


def test_replicas_follow_move(local_fs):
    (local_fs.root / 'docs').mkdir()
    (local_fs.root / 'docs' / 'f.bin').write_bytes(b'x')
    local_fs.set_replicas('docs/f.bin', 4)

    local_fs.move('docs', 'archive')

    assert local_fs.stat('archive/f.bin').replicas == 4


def test_replicas_dropped_on_delete(local_fs):
    (local_fs.root / 'f.bin').write_bytes(b'x')
    local_fs.set_replicas('f.bin', 4)
    local_fs.delete('f.bin')

    (local_fs.root / 'f.bin').write_bytes(b'y')

    assert local_fs.stat('f.bin').replicas == 1
