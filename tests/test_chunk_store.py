"""Tests for splitting, reassembling and addressing chunks."""

import hashlib
import json
from dataclasses import replace

import pytest

from filego.exceptions import InvalidInputError, NotFoundError
from filego.file import ChunkInfo, ChunkStore, DEFAULT_CHUNK_SIZE, MAX_CHUNK_SIZE


class TestSplit:
    """Splitting files into content-addressed chunks."""

    @pytest.mark.asyncio
    async def test_split_layout(self, chunk_store, sample_file):
        data = sample_file.read_bytes()
        file_id, chunks = await chunk_store.split(sample_file)

        assert file_id == hashlib.sha256(data).hexdigest()
        assert [c.index for c in chunks] == [0, 1, 2, 3]
        assert [c.size for c in chunks] == [DEFAULT_CHUNK_SIZE] * 3 + [200_000 - 3 * DEFAULT_CHUNK_SIZE]

        for chunk in chunks:
            stored = (chunk_store.root / file_id / chunk.id).read_bytes()
            assert chunk.id == hashlib.sha256(stored).hexdigest()
            assert chunk.file_id == file_id
            assert chunk.location == 'node-under-test'

    @pytest.mark.asyncio
    async def test_identical_bytes_give_identical_ids(self, chunk_store, tmp_path):
        first = tmp_path / 'a.bin'
        second = tmp_path / 'b.bin'
        first.write_bytes(b'same bytes' * 1000)
        second.write_bytes(b'same bytes' * 1000)

        id_a, chunks_a = await chunk_store.split(first, 4096)
        id_b, chunks_b = await chunk_store.split(second, 4096)

        assert id_a == id_b
        assert [c.id for c in chunks_a] == [c.id for c in chunks_b]

    @pytest.mark.asyncio
    async def test_repeated_chunks_share_an_id(self, chunk_store, tmp_path):
        path = tmp_path / 'repeat.bin'
        path.write_bytes(b'A' * 100 + b'B' * 100 + b'A' * 100)

        _, chunks = await chunk_store.split(path, 100)

        assert len(chunks) == 3
        assert chunks[0].id == chunks[2].id != chunks[1].id

    @pytest.mark.asyncio
    async def test_empty_file_has_no_chunks(self, chunk_store, tmp_path):
        path = tmp_path / 'empty.bin'
        path.write_bytes(b'')

        file_id, chunks = await chunk_store.split(path)

        assert file_id == hashlib.sha256(b'').hexdigest()
        assert chunks == []

    @pytest.mark.asyncio
    async def test_missing_file(self, chunk_store, tmp_path):
        with pytest.raises(NotFoundError):
            await chunk_store.split(tmp_path / 'nope.bin')

    @pytest.mark.asyncio
    async def test_chunk_size_is_capped(self, chunk_store, tmp_path):
        path = tmp_path / 'big.bin'
        path.write_bytes(b'\x01' * (MAX_CHUNK_SIZE + 10))

        _, chunks = await chunk_store.split(path, MAX_CHUNK_SIZE * 4)

        assert [c.size for c in chunks] == [MAX_CHUNK_SIZE, 10]


class TestReassemble:
    """Putting chunks back together."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize('chunk_size', [7, 4096, DEFAULT_CHUNK_SIZE, MAX_CHUNK_SIZE])
    async def test_reassemble_reproduces_file(self, chunk_store, tmp_path, chunk_size):
        path = tmp_path / 'input.bin'
        path.write_bytes(bytes(i % 256 for i in range(5000)))

        file_id, chunks = await chunk_store.split(path, chunk_size)
        output = await chunk_store.reassemble(file_id, chunks, tmp_path / 'out' / 'copy.bin')

        assert output.read_bytes() == path.read_bytes()

    @pytest.mark.asyncio
    async def test_order_of_list_does_not_matter(self, chunk_store, sample_file, tmp_path):
        file_id, chunks = await chunk_store.split(sample_file)

        output = await chunk_store.reassemble(file_id, list(reversed(chunks)), tmp_path / 'copy.bin')

        assert output.read_bytes() == sample_file.read_bytes()

    @pytest.mark.asyncio
    async def test_index_out_of_range(self, chunk_store, sample_file, tmp_path):
        file_id, chunks = await chunk_store.split(sample_file)
        chunks[-1] = replace(chunks[-1], index=len(chunks))

        with pytest.raises(InvalidInputError):
            await chunk_store.reassemble(file_id, chunks, tmp_path / 'copy.bin')

    @pytest.mark.asyncio
    async def test_missing_chunk_leaves_no_output(self, chunk_store, sample_file, tmp_path):
        file_id, chunks = await chunk_store.split(sample_file)
        (chunk_store.root / file_id / chunks[-1].id).unlink()
        output = tmp_path / 'out' / 'copy.bin'

        with pytest.raises(NotFoundError):
            await chunk_store.reassemble(file_id, chunks, output)

        assert not output.exists()

    @pytest.mark.asyncio
    async def test_missing_chunk_keeps_existing_output(self, chunk_store, sample_file, tmp_path):
        file_id, chunks = await chunk_store.split(sample_file)
        (chunk_store.root / file_id / chunks[0].id).unlink()
        output = tmp_path / 'copy.bin'
        output.write_bytes(b'previous contents')

        with pytest.raises(NotFoundError):
            await chunk_store.reassemble(file_id, chunks, output)

        assert output.read_bytes() == b'previous contents'

    @pytest.mark.asyncio
    async def test_negative_index(self, chunk_store, sample_file, tmp_path):
        file_id, chunks = await chunk_store.split(sample_file)
        chunks[0] = replace(chunks[0], index=-1)

        with pytest.raises(InvalidInputError):
            await chunk_store.reassemble(file_id, chunks, tmp_path / 'copy.bin')

    @pytest.mark.asyncio
    async def test_duplicate_index(self, chunk_store, sample_file, tmp_path):
        file_id, chunks = await chunk_store.split(sample_file)
        chunks[1] = replace(chunks[1], index=0)

        with pytest.raises(InvalidInputError):
            await chunk_store.reassemble(file_id, chunks, tmp_path / 'copy.bin')

    @pytest.mark.asyncio
    async def test_missing_chunk(self, chunk_store, sample_file, tmp_path):
        file_id, chunks = await chunk_store.split(sample_file)
        (chunk_store.root / file_id / chunks[2].id).unlink()

        with pytest.raises(NotFoundError):
            await chunk_store.reassemble(file_id, chunks, tmp_path / 'copy.bin')


class TestAddressedChunks:
    """Direct get / put and recorded chunk lists."""

    @pytest.mark.asyncio
    async def test_put_then_get(self, chunk_store):
        path = await chunk_store.put('file1', 'chunk1', b'payload')

        assert path == chunk_store.root / 'file1' / 'chunk1'
        assert await chunk_store.get('file1', 'chunk1') == b'payload'
        assert await chunk_store.has_chunk('file1', 'chunk1')

    @pytest.mark.asyncio
    async def test_get_missing_chunk(self, chunk_store):
        assert not await chunk_store.has_chunk('file1', 'nope')
        with pytest.raises(NotFoundError):
            await chunk_store.get('file1', 'nope')

    @pytest.mark.asyncio
    @pytest.mark.parametrize('file_id,chunk_id', [
        ('..', 'c'),
        ('f', '../escape'),
        ('manifests', 'c'),
        ('', 'c'),
    ])
    async def test_ids_cannot_escape_root(self, chunk_store, file_id, chunk_id):
        with pytest.raises(InvalidInputError):
            await chunk_store.put(file_id, chunk_id, b'x')

    @pytest.mark.asyncio
    async def test_chunk_list_is_persisted(self, chunk_store, sample_file):
        file_id, chunks = await chunk_store.split(sample_file)

        reopened = ChunkStore(chunk_store.root)

        assert await reopened.list_chunks(file_id) == chunks
        assert reopened.list_files() == [file_id]

        manifest = json.loads((chunk_store.manifests_dir / f"{file_id}.json").read_text())
        assert manifest['fileId'] == file_id
        assert len(manifest['chunks']) == len(chunks)

    @pytest.mark.asyncio
    async def test_unknown_file_has_no_chunk_list(self, chunk_store):
        with pytest.raises(NotFoundError):
            await chunk_store.list_chunks('f' * 64)

    @pytest.mark.asyncio
    async def test_stats(self, chunk_store, sample_file):
        await chunk_store.split(sample_file)
        await chunk_store.put('other', 'c1', b'12345')

        stats = chunk_store.get_stats()

        assert stats.files == 2
        assert stats.chunks == 5
        assert stats.bytes == 200_000 + 5


def test_chunk_info_accepts_both_key_styles():
    camel = ChunkInfo.from_dict({'id': 'c', 'index': 1, 'size': 3, 'fileId': 'f'})
    snake = ChunkInfo.from_dict({'id': 'c', 'index': 1, 'size': 3, 'file_id': 'f'})

    assert camel == snake
    assert camel.to_dict()['fileId'] == 'f'
